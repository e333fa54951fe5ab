"""Libvirt domain XML helpers."""

import logging
import xml.etree.ElementTree as ET

from kvmconsole.models import AUTO_PORT, DisplayConfig, VmSpec

logger = logging.getLogger(__name__)


def parse_display(xml_desc: str) -> DisplayConfig | None:
    """Return the first VNC graphics stanza of a domain XML, or None.

    A missing or non-numeric ``port`` attribute is treated as auto-assigned.
    """
    try:
        root = ET.fromstring(xml_desc)
    except ET.ParseError as e:
        logger.warning(f"Unparseable domain XML: {e}")
        return None

    graphics = root.find("./devices/graphics[@type='vnc']")
    if graphics is None:
        return None

    raw_port = graphics.get("port", str(AUTO_PORT))
    try:
        port = int(raw_port)
    except ValueError:
        port = AUTO_PORT
    return DisplayConfig(
        type="vnc",
        port=port,
        autoport=graphics.get("autoport", "no") == "yes",
        listen=graphics.get("listen"),
    )


def build_domain_xml(spec: VmSpec) -> str:
    """Build a KVM domain definition, booting from ``spec.iso_path`` when set."""
    domain = ET.Element("domain", type="kvm")
    ET.SubElement(domain, "name").text = spec.name
    ET.SubElement(domain, "memory", unit="MiB").text = str(spec.memory_mb)
    ET.SubElement(domain, "vcpu").text = str(spec.vcpus)

    os_el = ET.SubElement(domain, "os")
    ET.SubElement(os_el, "type", arch="x86_64").text = "hvm"
    ET.SubElement(os_el, "boot", dev="cdrom" if spec.iso_path else "hd")

    devices = ET.SubElement(domain, "devices")
    if spec.iso_path:
        cdrom = ET.SubElement(devices, "disk", type="file", device="cdrom")
        ET.SubElement(cdrom, "driver", name="qemu", type="raw")
        ET.SubElement(cdrom, "source", file=spec.iso_path)
        ET.SubElement(cdrom, "target", dev="hdc", bus="ide")
        ET.SubElement(cdrom, "readonly")

    disk_path = spec.disk_path
    if disk_path:
        disk = ET.SubElement(devices, "disk", type="file", device="disk")
        ET.SubElement(disk, "driver", name="qemu", type="qcow2")
        ET.SubElement(disk, "source", file=disk_path)
        ET.SubElement(disk, "target", dev="vda", bus="virtio")

    iface = ET.SubElement(devices, "interface", type="network")
    ET.SubElement(iface, "source", network="default")
    ET.SubElement(iface, "model", type="virtio")

    if spec.display_port is not None:
        ET.SubElement(
            devices,
            "graphics",
            type="vnc",
            port=str(spec.display_port),
            autoport="yes" if spec.display_port == AUTO_PORT else "no",
        )

    return ET.tostring(domain, encoding="unicode")

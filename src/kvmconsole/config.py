from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # Display server settings
    display_host: str = "localhost"  # Where the VNC servers listen (single-host deployment)
    display_base_port: int = 5900  # VNC port for display :0; auto ports are base + domain id

    # Tunnel settings
    max_sessions: int = 10  # Upper bound on concurrent tunnels
    connect_timeout: float = 5.0  # Seconds to wait for the display server TCP dial
    read_chunk_size: int = 4096  # Bytes read from the display server per frame

    # Hypervisor settings
    hypervisor_uri: str | None = None  # e.g. qemu:///system; None = in-memory registry

    # In-memory registry seed — JSON list of VM entries
    # e.g. [{"name": "alpha", "running": true, "instance_id": 1, "display_port": 5901}]
    vms: str = "[]"

    model_config = SettingsConfigDict(env_prefix="KVMCONSOLE_")

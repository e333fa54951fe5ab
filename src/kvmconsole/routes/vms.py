"""Read-only VM endpoints."""

from fastapi import APIRouter, HTTPException

from kvmconsole.dependencies import RegistryDep, ResolverDep
from kvmconsole.errors import AdmissionError, VmNotFoundError
from kvmconsole.models import DisplayResponse, VmResponse

router = APIRouter(prefix="/api/vms", tags=["vms"])


@router.get("")
async def list_vms(registry: RegistryDep, resolver: ResolverDep) -> list[VmResponse]:
    """List registered VMs with their current display port, if any."""
    vms = await registry.list_vms()
    result = []
    for vm in vms:
        try:
            port = await resolver.resolve_port(vm.name)
        except AdmissionError:
            port = None
        result.append(VmResponse(name=vm.name, running=vm.running, display_port=port))
    return result


@router.get("/{name}/display")
async def get_display(name: str, resolver: ResolverDep) -> DisplayResponse:
    """Return where the VM's VNC server is listening."""
    try:
        target = await resolver.resolve(name)
    except VmNotFoundError:
        raise HTTPException(status_code=404, detail="VM not found")
    except AdmissionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return DisplayResponse(name=name, host=target.host, port=target.port)

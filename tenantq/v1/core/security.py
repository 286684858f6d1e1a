from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

from tenantq.config.settings import AuthMode, Settings, SettingsDep


@dataclass
class TenantContext:
    """The shop a request acts on behalf of."""

    tenant_id: str


async def get_tenant(
    x_tenant_id: str | None = Header(None, alias="X-Tenant-ID"),
    settings: Settings = SettingsDep,
) -> TenantContext:
    """
    Dependency injection function to get the current tenant.

    Behavior based on AUTH_MODE:
    - none: X-Tenant-ID when given, else the dev default tenant
    - dev: Trusts the X-Tenant-ID header set by the authenticating proxy
    """
    if settings.auth_mode == AuthMode.NONE:
        return TenantContext(tenant_id=x_tenant_id or settings.dev_tenant_id)
    elif settings.auth_mode == AuthMode.DEV:
        if not x_tenant_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-Tenant-ID header is required in dev auth mode",
            )
        return TenantContext(tenant_id=x_tenant_id)
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


# Convenience type alias for dependency injection
TenantDep = Depends(get_tenant)

"""Startup data: basic rights, ADMIN and USER roles, initial admin user."""
from __future__ import annotations
import logging
from enum import Enum

from .dto import RightDto, RoleDto, UserDto
from .registry import ServiceRegistry

logger = logging.getLogger(__name__)

ADMIN_ROLE_NAME = "ADMIN"
USER_ROLE_NAME = "USER"


class BasicApplicationRight(str, Enum):
    API_DEVELOPER = "API_DEVELOPER"
    API_TOKEN = "API_TOKEN"
    API_TOKEN_ADMIN = "API_TOKEN_ADMIN"
    USER_CREATE = "USER_CREATE"
    USER_READ = "USER_READ"
    USER_UPDATE = "USER_UPDATE"
    USER_DELETE = "USER_DELETE"
    ROLE_CREATE = "ROLE_CREATE"
    ROLE_READ = "ROLE_READ"
    ROLE_UPDATE = "ROLE_UPDATE"
    ROLE_DELETE = "ROLE_DELETE"
    RIGHT_READ = "RIGHT_READ"
    RIGHT_UPDATE = "RIGHT_UPDATE"


RIGHT_DESCRIPTIONS = {
    BasicApplicationRight.API_DEVELOPER: "Access to developer endpoints",
    BasicApplicationRight.API_TOKEN: "Create and manage own API tokens",
    BasicApplicationRight.API_TOKEN_ADMIN: "Manage API tokens of all users",
    BasicApplicationRight.USER_CREATE: "Create users",
    BasicApplicationRight.USER_READ: "Read users",
    BasicApplicationRight.USER_UPDATE: "Update users",
    BasicApplicationRight.USER_DELETE: "Delete users",
    BasicApplicationRight.ROLE_CREATE: "Create roles",
    BasicApplicationRight.ROLE_READ: "Read roles",
    BasicApplicationRight.ROLE_UPDATE: "Update roles",
    BasicApplicationRight.ROLE_DELETE: "Delete roles",
    BasicApplicationRight.RIGHT_READ: "Read rights",
    BasicApplicationRight.RIGHT_UPDATE: "Update right descriptions",
}


def initialize_rights(services: ServiceRegistry) -> int:
    created = 0
    for right in BasicApplicationRight:
        if services.rights.exists_by_id(right.value):
            continue
        services.rights.create(RightDto(right.value, RIGHT_DESCRIPTIONS[right]))
        created += 1
    return created


def initialize_roles(services: ServiceRegistry, default_role: str = USER_ROLE_NAME) -> None:
    all_rights = {right.value for right in BasicApplicationRight}
    admin = services.roles.get_role(ADMIN_ROLE_NAME)
    if admin is None:
        services.roles.create(RoleDto(ADMIN_ROLE_NAME, "Administrator", protected=True, rights=all_rights))
    elif admin.authorities != all_rights:
        # Protected roles cannot go through update(); newly added rights are merged directly
        updated = admin.clone()
        updated.rights = services.roles.resolve_rights(all_rights)
        services.roles.repository.save(updated)
        services.users.replace_role(updated)

    for name in {USER_ROLE_NAME, default_role}:
        if services.roles.get_role(name) is None:
            services.roles.create(
                RoleDto(name, "Default user role", rights={BasicApplicationRight.API_TOKEN.value})
            )


def initialize_admin_user(services: ServiceRegistry, cfg) -> None:
    if not cfg.admin_email:
        logger.info("No ADMIN_EMAIL configured, skipping initial admin user")
        return
    admin_email = cfg.admin_email.lower()
    if services.users.get_one(lambda user: user.email.lower() == admin_email) is not None:
        return
    if not cfg.admin_password:
        raise RuntimeError("ADMIN_PASSWORD is required to create the initial admin user")
    services.users.create(UserDto(
        email=cfg.admin_email,
        first_name=cfg.admin_first_name,
        last_name=cfg.admin_last_name,
        roles={ADMIN_ROLE_NAME},
        password=cfg.admin_password,
    ))
    logger.info(f"Created initial admin user {cfg.admin_email}")


def initialize_data(services: ServiceRegistry, cfg) -> None:
    """Idempotent: only missing data is created."""
    created = initialize_rights(services)
    initialize_roles(services, cfg.default_role)
    initialize_admin_user(services, cfg)
    logger.info(f"Data initialization complete ({created} new rights)")

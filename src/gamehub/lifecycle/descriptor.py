"""Game server container descriptor."""

from gamehub.config import RuntimeConfig
from gamehub.core.interfaces.runtime import ContainerSpec, HealthCheckSpec
from gamehub.core.models import Instance
from gamehub.runtimes.docker.naming import ResourceNaming


def _flag(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def build_environment(instance: Instance, config: RuntimeConfig) -> dict[str, str]:
    """Environment for the itzg/minecraft-server image family."""
    if not instance.secret:
        raise ValueError(f"Instance {instance.id} has no secret")
    return {
        "EULA": "TRUE",
        "TYPE": "VANILLA",
        "VERSION": instance.game_version,
        "MEMORY": f"{instance.memory_limit_mb}M",
        "MOTD": instance.name,
        "ENABLE_RCON": "true",
        "RCON_PASSWORD": instance.secret,
        "RCON_PORT": str(config.rcon_port),
        "SERVER_PORT": str(config.game_port),
        "DIFFICULTY": config.difficulty,
        "MODE": config.gamemode,
        "ONLINE_MODE": _flag(config.online_mode),
        "ENABLE_COMMAND_BLOCK": _flag(config.enable_command_block),
        "SPAWN_PROTECTION": str(config.spawn_protection),
        "JVM_XX_OPTS": config.jvm_xx_opts,
        "JVM_OPTS": config.jvm_opts,
    }


def build_container_spec(
    instance: Instance,
    config: RuntimeConfig,
    naming: ResourceNaming,
    network: str = "bridge",
) -> ContainerSpec:
    """Describe the container for a provisioned instance.

    Raises:
        ValueError: If the instance has no port or secret yet.
    """
    if instance.port is None:
        raise ValueError(f"Instance {instance.id} has no port reservation")
    return ContainerSpec(
        name=naming.container_name(instance.id),
        image=instance.image_ref,
        env=build_environment(instance, config),
        host_port=instance.port,
        container_port=config.game_port,
        memory_limit_mb=instance.memory_limit_mb,
        data_dir=str(naming.data_dir(instance.id)),
        labels=naming.labels(instance.id, instance.owner_user_id),
        network=network,
        healthcheck=HealthCheckSpec(
            test=config.healthcheck_cmd,
            interval=config.healthcheck_interval,
            timeout=config.healthcheck_timeout,
            retries=config.healthcheck_retries,
            start_period=config.healthcheck_start_period,
        ),
        log_max_size=config.log_max_size,
        log_max_file=config.log_max_file,
    )

"""Security profiles for Docker environments."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

_MEMORY_MULTIPLIERS = {
    "k": 1024,
    "m": 1024 ** 2,
    "g": 1024 ** 3,
}


def parse_memory(memory: str) -> int:
    """Parse a memory string ("512m", "1g") to bytes."""
    memory = memory.lower().strip()
    if memory.endswith("b"):
        memory = memory[:-1]
    multiplier = _MEMORY_MULTIPLIERS.get(memory[-1:], 1)
    number = memory[:-1] if memory[-1:] in _MEMORY_MULTIPLIERS else memory
    return int(number) * multiplier


@dataclass
class SecurityProfile:
    """Container hardening settings.

    Attributes:
        name: Profile name identifier
        read_only: Whether root filesystem is read-only
        cap_drop: Linux capabilities to drop
        security_opt: Security options (no-new-privileges, etc.)
        network_mode: Network isolation mode
        pids_limit: Maximum number of processes
        tmpfs_mounts: Temporary filesystem mounts
        user: User to run as (UID:GID)
    """

    name: str
    read_only: bool = True
    cap_drop: List[str] = field(default_factory=lambda: ["ALL"])
    security_opt: List[str] = field(default_factory=lambda: ["no-new-privileges:true"])
    network_mode: str = "none"
    pids_limit: int = 100
    tmpfs_mounts: Dict[str, str] = field(default_factory=dict)
    user: str = "1000:1000"
    memory_limit: str = "512m"
    cpu_limit: float = 1.0

    def to_container_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``docker.containers.run``/``create``."""
        kwargs: Dict[str, Any] = {
            "read_only": self.read_only,
            "cap_drop": self.cap_drop,
            "security_opt": self.security_opt,
            "network_mode": self.network_mode,
            "pids_limit": self.pids_limit,
            "mem_limit": parse_memory(self.memory_limit),
            "nano_cpus": int(self.cpu_limit * 1e9),
            "user": self.user,
        }
        if self.tmpfs_mounts:
            kwargs["tmpfs"] = self.tmpfs_mounts
        return kwargs


class SecurityProfiles:
    """Predefined security profiles."""

    @staticmethod
    def strict(memory_limit: str = "512m", cpu_limit: float = 1.0) -> SecurityProfile:
        """No network, read-only root, few processes."""
        return SecurityProfile(
            name="strict",
            network_mode="none",
            pids_limit=50,
            tmpfs_mounts={"/tmp": "rw,noexec,nosuid,size=100m"},
            memory_limit=memory_limit,
            cpu_limit=cpu_limit,
        )

    @staticmethod
    def standard(memory_limit: str = "512m", cpu_limit: float = 1.0) -> SecurityProfile:
        return SecurityProfile(
            name="standard",
            network_mode="none",
            pids_limit=100,
            tmpfs_mounts={"/tmp": "rw,noexec,nosuid,size=200m"},
            memory_limit=memory_limit,
            cpu_limit=cpu_limit,
        )

    @staticmethod
    def development(memory_limit: str = "1g", cpu_limit: float = 2.0) -> SecurityProfile:
        """Writable root and bridge network, for local debugging."""
        return SecurityProfile(
            name="development",
            read_only=False,
            network_mode="bridge",
            pids_limit=500,
            memory_limit=memory_limit,
            cpu_limit=cpu_limit,
        )

    @staticmethod
    def get_profile(
        name: str,
        memory_limit: Optional[str] = None,
        cpu_limit: Optional[float] = None,
    ) -> SecurityProfile:
        """Get a security profile by name.

        Raises:
            ValueError: If profile name unknown
        """
        profiles = {
            "strict": SecurityProfiles.strict,
            "standard": SecurityProfiles.standard,
            "development": SecurityProfiles.development,
        }
        if name not in profiles:
            raise ValueError(
                f"Unknown security profile: {name}. Available: {list(profiles)}"
            )

        kwargs = {}
        if memory_limit is not None:
            kwargs["memory_limit"] = memory_limit
        if cpu_limit is not None:
            kwargs["cpu_limit"] = cpu_limit
        return profiles[name](**kwargs)


def validate_security_profile(profile: SecurityProfile) -> List[str]:
    """Return configuration warnings for a profile (empty if fine)."""
    warnings = []
    if profile.name == "strict" and not profile.read_only:
        warnings.append("Strict profile should have read_only=True")
    if profile.name == "strict" and profile.network_mode != "none":
        warnings.append("Strict profile should not have network access")
    if "ALL" not in profile.cap_drop:
        warnings.append("Security profile should drop ALL capabilities")
    try:
        parse_memory(profile.memory_limit)
    except ValueError:
        warnings.append(f"Invalid memory limit format: {profile.memory_limit}")
    return warnings


def docker_status() -> Tuple[bool, str]:
    """Check whether the Docker daemon is reachable.

    Returns:
        Tuple of (is_available, message)
    """
    try:
        import docker
    except ImportError:
        return False, "Docker SDK not installed (pip install docker)"

    try:
        client = docker.from_env()
        version = client.version()
        client.close()
    except Exception as e:
        return False, f"Docker not accessible: {e}"
    return True, f"Docker {version.get('Version', 'unknown')} is installed and running"

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="THERMALGATE_", extra="ignore"
    )

    app_name: str = "Thermal Gate"
    timezone: str = ""  # empty = system local zone

    # Task admission (scheduler)
    task_ceiling_c: float = 70.0
    task_ideal_c: float = 55.0
    preferred_start: str = "22:00"  # empty disables the preferred window
    preferred_end: str = "06:00"
    scheduler_interval_seconds: float = 300
    wait_poll_seconds: float = 300
    max_wait_seconds: float = 86400
    default_priority: int = Field(default=5, ge=1, le=10)
    action_timeout_seconds: float = 0  # 0 = no limit

    # Power mode protections
    power_high_c: float = 80.0
    power_recovery_c: float = 65.0
    power_critical_c: float = 90.0
    min_dwell_seconds: float = 300
    power_check_seconds: float = 30

    # Sensor mode: "sim", "sysfs" or "command"
    sensor_mode: str = "sim"
    sensor_timeout_seconds: float = 10
    sim_temperature_c: float = 50.0
    sysfs_zone_glob: str = "/sys/class/thermal/thermal_zone*/temp"
    sensor_command: str = "sudo powermetrics --samplers smc -i 1 -n 1"
    sensor_pattern: str = r"CPU die temperature:\s*([0-9]+(?:\.[0-9]+)?)"

    # Profile mode: "sim" or "command"
    profile_mode: str = "sim"
    profile_timeout_seconds: float = 15
    profile_normal_command: str = "sudo pmset -a lowpowermode 0"
    profile_low_power_command: str = "sudo pmset -a lowpowermode 1"
    profile_emergency_command: str = "sudo pmset -a lowpowermode 1"

    # Storage
    sqlite_path: str = Field(default="thermal_gate.db")

    # Logging
    log_file: str = "thermal_gate.log"
    log_level: str = "INFO"

    # Report decisions without touching the profile or running jobs
    dry_run: bool = False

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        if not self.power_recovery_c < self.power_high_c <= self.power_critical_c:
            raise ValueError(
                "power thresholds must satisfy recovery < high <= critical "
                f"(got {self.power_recovery_c}/{self.power_high_c}/{self.power_critical_c})"
            )
        if self.task_ideal_c > self.task_ceiling_c:
            raise ValueError(
                f"task_ideal_c ({self.task_ideal_c}) must not exceed task_ceiling_c ({self.task_ceiling_c})"
            )
        return self


settings = Settings()

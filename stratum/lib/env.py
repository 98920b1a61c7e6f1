from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    config_default: str = "/etc/stratum/config.yaml"
    log_default: str = "/var/log/stratum.log"
    data_root: str = "/stratum"
    boot_artifacts_dir: str = "/boot/stratum"
    entries_dir: str = "/boot/loader/entries"
    entry_prefix: str = "stratum-"


PATHS = Paths()

# Replaced with the deployment id when a boot entry is rendered.
DEPLOYMENT_TOKEN = "@DEPLOYMENT@"

DEFAULT_BOOT_TEMPLATE = (
    f"title   Stratum ({DEPLOYMENT_TOKEN})\n"
    f"linux   /stratum/{DEPLOYMENT_TOKEN}/vmlinuz\n"
    f"initrd  /stratum/{DEPLOYMENT_TOKEN}/initramfs.img\n"
    f"options root=LABEL=stratum rootflags=subvol=stratum/deployments/{DEPLOYMENT_TOKEN}/rootfs rw quiet\n"
)

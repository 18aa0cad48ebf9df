import hashlib
import logging
import platform
import socket
import subprocess
import sys
import time
import uuid
from datetime import datetime, timezone

import psutil

logger = logging.getLogger(__name__)


def get_machine_id():
    """
    Retrieves the machine ID based on the operating system and returns its SHA-256 hash.
    Falls back to the primary MAC address when no platform ID can be read.
    """
    machine_id = None
    system = platform.system()

    if system == "Windows":
        try:
            result = subprocess.run(
                ["reg", "query", "HKLM\\SOFTWARE\\Microsoft\\Cryptography", "/v", "MachineGuid"],
                capture_output=True, text=True, check=True, creationflags=subprocess.CREATE_NO_WINDOW
            )
            for line in result.stdout.splitlines():
                if "MachineGuid" in line:
                    machine_id = line.split("REG_SZ")[-1].strip()
                    break
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            logger.error("Error getting MachineGuid on Windows: %s", e)
    elif system == "Darwin":
        try:
            result = subprocess.run(
                ["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"],
                capture_output=True, text=True, check=True
            )
            for line in result.stdout.splitlines():
                if "IOPlatformUUID" in line:
                    machine_id = line.split("=")[-1].strip().strip('"')
                    break
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            logger.error("Error getting IOPlatformUUID on macOS: %s", e)
    elif system == "Linux":
        try:
            with open("/etc/machine-id", "r") as f:
                machine_id = f.read().strip()
        except OSError as e:
            logger.error("Error reading /etc/machine-id on Linux: %s", e)

    if not machine_id:
        logger.warning("No platform machine ID available on %s, using MAC address", system)
        machine_id = f"{uuid.getnode():012x}"

    return hashlib.sha256(machine_id.encode("utf-8")).hexdigest()


def get_os_info() -> dict:
    return {
        "type": platform.system(),
        "release": platform.release(),
        "arch": platform.machine(),
        "uptime": int(time.time() - psutil.boot_time()),
    }


def get_system_info() -> dict:
    memory = psutil.virtual_memory()
    return {
        "totalMemory": memory.total,
        "freeMemory": memory.available,
        "cpus": psutil.cpu_count() or 1,
        "loadAverage": [round(value, 2) for value in psutil.getloadavg()],
    }


def build_snapshot(checks, machine_id) -> dict:
    """
    Collects a full health snapshot: the four check categories from
    ``checks`` plus host metadata, in the wire shape the server accepts.
    """
    return {
        "machineId": machine_id,
        "platform": sys.platform,
        "hostname": socket.gethostname(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "osInfo": get_os_info(),
        "diskEncryption": checks.check_disk_encryption(),
        "osUpdates": checks.check_os_updates(),
        "antivirus": checks.check_antivirus(),
        "sleepSettings": checks.check_sleep_settings(),
        "systemInfo": get_system_info(),
    }

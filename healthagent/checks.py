import json
import logging
import os
import platform
import re
import shutil
import subprocess
import time
from abc import ABC, abstractmethod

from .errors import ProbeError

# checks.py - Platform specific health checks

logger = logging.getLogger(__name__)

NOT_SUPPORTED = "Platform not supported"
SLEEP_LIMIT_MINUTES = 10
CLAMAV_DB_DIR = "/var/lib/clamav"
CLAMAV_MAX_DB_AGE_DAYS = 7


def _creationflags():
    return subprocess.CREATE_NO_WINDOW if platform.system() == "Windows" else 0


def _sleep_result(minutes, status):
    return {
        "sleepTimeout": minutes,
        "compliant": minutes is not None and minutes <= SLEEP_LIMIT_MINUTES,
        "status": status,
    }


class HealthChecks(ABC):
    """
    Capability interface for the four health check categories.

    Subclasses implement the platform bodies (``disk_encryption``,
    ``os_updates``, ``antivirus``, ``sleep_settings``). Callers use the
    ``check_*`` methods, which always return a plain JSON-safe dict and
    turn any failure into ``{"error": True, "message": ...}``.
    """

    name = "unknown"

    def run_command(self, args, ok_codes=(0,), timeout=120) -> str:
        """
        Runs an external command and returns its stdout.
        Raises ProbeError if the command is missing, times out, or exits
        with a code outside ``ok_codes``.
        """
        try:
            result = subprocess.run(
                args, capture_output=True, text=True, check=False,
                timeout=timeout, creationflags=_creationflags()
            )
        except FileNotFoundError:
            raise ProbeError(f"Command not found: {args[0]}")
        except subprocess.TimeoutExpired:
            raise ProbeError(f"Command timed out: {' '.join(args)}")
        if result.returncode not in ok_codes:
            detail = (result.stderr or result.stdout or "").strip()
            raise ProbeError(f"{args[0]} exited with status {result.returncode}: {detail[:200]}")
        return result.stdout

    def safe_run(self, fn) -> dict:
        try:
            result = fn()
            # Round trip guarantees a plain, serializable structure
            return json.loads(json.dumps(result))
        except Exception as e:
            logger.warning("%s check %s failed: %s", self.name, fn.__name__, e)
            return {"error": True, "message": str(e) or e.__class__.__name__}

    def check_disk_encryption(self) -> dict:
        return self.safe_run(self.disk_encryption)

    def check_os_updates(self) -> dict:
        return self.safe_run(self.os_updates)

    def check_antivirus(self) -> dict:
        return self.safe_run(self.antivirus)

    def check_sleep_settings(self) -> dict:
        return self.safe_run(self.sleep_settings)

    @abstractmethod
    def disk_encryption(self) -> dict:
        pass

    @abstractmethod
    def os_updates(self) -> dict:
        pass

    @abstractmethod
    def antivirus(self) -> dict:
        pass

    @abstractmethod
    def sleep_settings(self) -> dict:
        pass


class WindowsChecks(HealthChecks):
    name = "windows"

    UPDATES_SCRIPT = """
    $searcher = (New-Object -ComObject Microsoft.Update.Session).CreateUpdateSearcher()
    $result = $searcher.Search("IsInstalled=0 and Type='Software'")
    Write-Host "PendingCount: $($result.Updates.Count)"
    $last = Get-HotFix | Where-Object { $_.InstalledOn } | Sort-Object InstalledOn -Descending | Select-Object -First 1
    if ($last) { Write-Host "LastInstalled: $($last.InstalledOn.ToString('yyyy-MM-dd'))" }
    """

    ANTIVIRUS_SCRIPT = """
    Get-CimInstance -Namespace root/SecurityCenter2 -ClassName AntivirusProduct |
        ForEach-Object { Write-Host "$($_.displayName)|$($_.productState)" }
    """

    def powershell(self, script) -> str:
        return self.run_command(["powershell", "-NoProfile", "-Command", script])

    def disk_encryption(self):
        stdout = self.run_command(["manage-bde", "-status", "C:"])
        if "Protection On" in stdout:
            encrypted = True
        elif "Protection Off" in stdout:
            encrypted = False
        else:
            raise ProbeError("Could not parse BitLocker protection status")
        return {
            "encrypted": encrypted,
            "method": "BitLocker",
            "status": "BitLocker enabled" if encrypted else "BitLocker not enabled",
        }

    def os_updates(self):
        stdout = self.powershell(self.UPDATES_SCRIPT)
        match = re.search(r"PendingCount:\s*(\d+)", stdout)
        if not match:
            raise ProbeError("Could not determine Windows update status")
        pending = int(match.group(1))

        # The server derives daysBehind from lastInstalled so the payload
        # stays stable from one day to the next
        last = re.search(r"LastInstalled:\s*(\d{4}-\d{2}-\d{2})", stdout)

        return {
            "upToDate": pending == 0,
            "updatesAvailable": pending > 0,
            "pendingCount": pending,
            "daysBehind": None if pending else 0,
            "lastInstalled": last.group(1) if last else None,
            "status": f"{pending} update{'s' if pending != 1 else ''} pending",
        }

    @staticmethod
    def decode_product_state(state):
        """
        SecurityCenter2 productState: bit 0x1000 set when real-time
        protection is on, bit 0x10 set when signatures are out of date.
        """
        return bool(state & 0x1000), bool(state & 0x10)

    def antivirus(self):
        stdout = self.powershell(self.ANTIVIRUS_SCRIPT)
        products = []
        for line in stdout.splitlines():
            if "|" not in line:
                continue
            name, _, state = line.strip().rpartition("|")
            try:
                products.append((name or "Unknown", int(state)))
            except ValueError:
                logger.debug("Ignoring unparsable antivirus line: %s", line)

        if not products:
            return {
                "installed": False,
                "enabled": False,
                "definitionsOutdated": False,
                "name": None,
                "status": "No antivirus product detected",
            }

        # Prefer an active product when several are registered
        decoded = [(name, *self.decode_product_state(state)) for name, state in products]
        decoded.sort(key=lambda p: not p[1])
        name, enabled, outdated = decoded[0]
        return {
            "installed": True,
            "enabled": enabled,
            "definitionsOutdated": outdated,
            "name": name,
            "status": "Antivirus active" if enabled else "Antivirus installed but not active",
        }

    def sleep_settings(self):
        stdout = self.run_command(["powercfg", "/query", "SCHEME_CURRENT", "SUB_SLEEP", "STANDBYIDLE"])
        match = re.search(r"Current AC Power Setting Index:\s*0x([0-9a-fA-F]+)", stdout)
        if not match:
            return _sleep_result(None, "Windows power settings check - manual verification recommended")
        seconds = int(match.group(1), 16)
        if seconds == 0:
            return _sleep_result(None, "Sleep disabled on AC power")
        minutes = seconds // 60
        return _sleep_result(minutes, f"Sleep after {minutes} min on AC power")


class MacChecks(HealthChecks):
    name = "macos"

    XPROTECT_PATHS = [
        "/Library/Apple/System/Library/CoreServices/XProtect.bundle",
        "/System/Library/CoreServices/XProtect.bundle",
    ]
    THIRD_PARTY_APPS = {
        "/Applications/Sophos Home.app": "Sophos Home",
        "/Applications/Malwarebytes.app": "Malwarebytes",
    }

    def disk_encryption(self):
        stdout = self.run_command(["fdesetup", "status"])
        encrypted = "FileVault is On" in stdout
        return {
            "encrypted": encrypted,
            "method": "FileVault",
            "status": "FileVault enabled" if encrypted else "FileVault not enabled",
        }

    def os_updates(self):
        stdout = self.run_command(["softwareupdate", "-l"], timeout=300)
        if "No new software available" in stdout:
            pending = 0
        else:
            pending = len([line for line in stdout.splitlines() if line.strip().startswith("* Label:")])
            if pending == 0:
                pending = len([line for line in stdout.splitlines() if line.strip().startswith("*")])
        return {
            "upToDate": pending == 0,
            "updatesAvailable": pending > 0,
            "pendingCount": pending,
            "daysBehind": None if pending else 0,
            "status": "Updates available" if pending else "System up to date",
        }

    def antivirus(self):
        for path, name in self.THIRD_PARTY_APPS.items():
            if os.path.exists(path):
                return {
                    "installed": True,
                    "enabled": True,
                    "definitionsOutdated": False,
                    "name": name,
                    "status": f"{name} detected",
                }
        installed = any(os.path.exists(path) for path in self.XPROTECT_PATHS)
        return {
            "installed": installed,
            "enabled": installed,
            "definitionsOutdated": False,
            "name": "XProtect (Built-in)" if installed else None,
            "status": "macOS built-in malware protection active" if installed else "XProtect bundle not found",
        }

    def sleep_settings(self):
        stdout = self.run_command(["pmset", "-g"])
        sleep_time = None
        display_sleep = None
        for line in stdout.splitlines():
            match = re.match(r"\s*sleep\s+(\d+)", line)
            if match:
                sleep_time = int(match.group(1))
            match = re.match(r"\s*displaysleep\s+(\d+)", line)
            if match:
                display_sleep = int(match.group(1))

        # 0 means never
        candidates = [value for value in (sleep_time, display_sleep) if value]
        effective = min(candidates) if candidates else None
        result = _sleep_result(effective, f"Sleep: {sleep_time or 'Never'} min, Display: {display_sleep or 'Never'} min")
        result["displaySleep"] = display_sleep
        return result


class LinuxChecks(HealthChecks):
    name = "linux"

    ANTIVIRUS_PRODUCTS = [
        ("ClamAV", "clamscan", ["clamav-daemon", "clamd@scan", "clamd"]),
        ("ClamAV", "freshclam", ["clamav-freshclam"]),
        ("RKHunter", "rkhunter", []),
        ("chkrootkit", "chkrootkit", []),
    ]

    def disk_encryption(self):
        stdout = self.run_command(["lsblk", "-f"])
        encrypted = "crypto_LUKS" in stdout
        return {
            "encrypted": encrypted,
            "method": "LUKS",
            "status": "LUKS encryption detected" if encrypted else "No LUKS encryption found",
        }

    def os_updates(self):
        if shutil.which("apt"):
            stdout = self.run_command(["apt", "list", "--upgradable"])
            pending = len([line for line in stdout.splitlines() if "/" in line and "upgradable" in line])
            manager = "apt"
        elif shutil.which("dnf") or shutil.which("yum"):
            manager = "dnf" if shutil.which("dnf") else "yum"
            # check-update exits 100 when updates are available
            stdout = self.run_command([manager, "check-update", "-q"], ok_codes=(0, 100), timeout=300)
            pending = len([line for line in stdout.splitlines() if line and not line.startswith((" ", "Obsoleting", "Last metadata"))])
        elif shutil.which("zypper"):
            stdout = self.run_command(["zypper", "--quiet", "list-updates"], timeout=300)
            pending = len([line for line in stdout.splitlines() if line.startswith("v ")])
            manager = "zypper"
        else:
            raise ProbeError("No supported package manager found")

        return {
            "upToDate": pending == 0,
            "updatesAvailable": pending > 0,
            "pendingCount": pending,
            "daysBehind": None if pending else 0,
            "packageManager": manager,
            "status": f"{pending} package{'s' if pending != 1 else ''} can be upgraded",
        }

    def service_active(self, units) -> bool:
        if shutil.which("systemctl"):
            for unit in units:
                try:
                    if self.run_command(["systemctl", "is-active", unit]).strip() == "active":
                        return True
                except ProbeError:
                    continue
            return False
        try:
            processes = self.run_command(["ps", "aux"])
        except ProbeError:
            return False
        return any(proc in processes for proc in ("clamd", "freshclam"))

    def clamav_definitions_outdated(self) -> bool:
        newest = None
        for name in ("daily.cld", "daily.cvd"):
            path = os.path.join(CLAMAV_DB_DIR, name)
            if os.path.exists(path):
                mtime = os.path.getmtime(path)
                newest = mtime if newest is None else max(newest, mtime)
        if newest is None:
            return True
        return (time.time() - newest) > CLAMAV_MAX_DB_AGE_DAYS * 86400

    def antivirus(self):
        for name, binary, units in self.ANTIVIRUS_PRODUCTS:
            if not shutil.which(binary):
                continue
            if name == "ClamAV":
                enabled = self.service_active(units)
                outdated = self.clamav_definitions_outdated()
            else:
                # On-demand scanners have no resident daemon
                enabled = True
                outdated = False
            return {
                "installed": True,
                "enabled": enabled,
                "definitionsOutdated": outdated,
                "name": name,
                "status": f"{name} detected" if enabled else f"{name} installed but not running",
            }
        return {
            "installed": False,
            "enabled": False,
            "definitionsOutdated": False,
            "name": None,
            "status": "No common antivirus solutions detected",
        }

    def sleep_settings(self):
        try:
            stdout = self.run_command(["gsettings", "get", "org.gnome.desktop.session", "idle-delay"])
            # gsettings prints the GVariant type first, e.g. "uint32 300"
            match = re.search(r"(\d+)\s*$", stdout.strip())
            if match:
                delay = int(match.group(1))
                if delay == 0:
                    return _sleep_result(None, "GNOME idle delay disabled")
                return _sleep_result(delay // 60, f"GNOME idle delay: {delay} seconds")
        except ProbeError as e:
            logger.debug("gsettings unavailable, trying xset: %s", e)

        try:
            stdout = self.run_command(["xset", "-q"])
            for line in stdout.splitlines():
                match = re.search(r"timeout:\s*(\d+)", line)
                if match:
                    seconds = int(match.group(1))
                    if seconds == 0:
                        return _sleep_result(None, "X screen saver disabled")
                    return _sleep_result(seconds // 60, f"X screen saver timeout: {seconds} seconds")
        except ProbeError as e:
            logger.debug("xset unavailable: %s", e)

        return _sleep_result(None, "Manual check recommended for your desktop environment")


class UnsupportedChecks(HealthChecks):
    name = "unsupported"

    def disk_encryption(self):
        return {"encrypted": False, "method": None, "status": NOT_SUPPORTED}

    def os_updates(self):
        return {"upToDate": False, "updatesAvailable": False, "pendingCount": None, "daysBehind": None, "status": NOT_SUPPORTED}

    def antivirus(self):
        return {"installed": False, "enabled": False, "definitionsOutdated": False, "name": None, "status": NOT_SUPPORTED}

    def sleep_settings(self):
        return _sleep_result(None, NOT_SUPPORTED)


PLATFORM_CHECKS = {
    "Windows": WindowsChecks,
    "Darwin": MacChecks,
    "Linux": LinuxChecks,
}


def get_checks(system=None) -> HealthChecks:
    """
    Returns the health checks for the given (or running) operating system.
    Unsupported systems get neutral "not supported" results.
    """
    system = system or platform.system()
    return PLATFORM_CHECKS.get(system, UnsupportedChecks)()

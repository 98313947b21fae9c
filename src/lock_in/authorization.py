"""Decides whether a foreground application may be used during a session.

Rules are evaluated in a fixed order and the first match wins. The
security-risk list is checked before the whitelist so that no whitelist
entry can ever re-enable a surface that defeats enforcement.
"""

from collections.abc import Iterable

from loguru import logger

from lock_in.schema import AuthorizationDecision, RuleCategory, Verdict, WhitelistRecord
from lock_in.settings import settings
from lock_in.store import StateStore

# Surfaces that let the user stop or bypass the daemon
SECURITY_RISK_PACKAGES = frozenset(
    {
        # Settings
        "gnome-control-center",
        "systemsettings",
        "xfce4-settings-manager",
        "cinnamon-settings",
        "mate-control-center",
        "lxqt-config",
        # Task managers (allow force stop)
        "gnome-system-monitor",
        "plasma-systemmonitor",
        "ksysguard",
        "xfce4-taskmanager",
        "mate-system-monitor",
        "lxtask",
        # Launchers
        "krunner",
        "rofi",
        "dmenu",
        "ulauncher",
        "albert",
        "synapse",
        "wofi",
        "fuzzel",
    }
)

ESSENTIAL_SYSTEM_PACKAGES = frozenset(
    {
        # Display server and shell (status bar, notifications)
        "Xorg",
        "Xwayland",
        "gnome-shell",
        "plasmashell",
        "kwin_x11",
        "kwin_wayland",
        "xfce4-panel",
        "xfwm4",
        "mate-panel",
        "waybar",
        "polybar",
        # Screen lockers
        "gnome-screensaver",
        "xscreensaver",
        "light-locker",
        "kscreenlocker_greet",
        "swaylock",
        "i3lock",
        # Input methods
        "ibus-daemon",
        "ibus-ui-gtk3",
        "ibus-extension-gtk3",
        "fcitx",
        "fcitx5",
        "onboard",
        # Authentication prompts
        "polkit-gnome-authentication-agent-1",
        "polkit-kde-authentication-agent-1",
        "gcr-prompter",
        "pinentry",
        "pinentry-gnome3",
        # Emergency camera
        "cheese",
        "snapshot",
    }
)

# Default apps allowed without counting against the quota
DEFAULT_APPS = {
    "phone": frozenset({"gnome-calls", "plasma-dialer", "kdeconnect-app", "linphone"}),
    "clock": frozenset({"gnome-clocks", "kclock", "kalarm"}),
    "calendar": frozenset({"gnome-calendar", "korganizer", "merkuro-calendar", "orage"}),
}

# Services an allowed default app needs behind the scenes
SUPPORTING_SERVICES = {
    "phone": frozenset({"ModemManager", "callaudiod", "feedbackd", "ofonod"}),
    "clock": frozenset(),
    "calendar": frozenset({"evolution-calendar-factory", "evolution-alarm-notify"}),
}


class WhitelistError(ValueError):
    pass


def enabled_default_categories(whitelist: WhitelistRecord) -> list[str]:
    flags = {
        "phone": whitelist.allow_phone_app,
        "clock": whitelist.allow_clock_app,
        "calendar": whitelist.allow_calendar_app,
    }
    return [name for name, enabled in flags.items() if enabled]


def default_app_packages(whitelist: WhitelistRecord) -> frozenset[str]:
    packages: set[str] = set()
    for category in enabled_default_categories(whitelist):
        packages |= DEFAULT_APPS[category]
    return frozenset(packages)


def supporting_packages(whitelist: WhitelistRecord) -> frozenset[str]:
    packages: set[str] = set()
    for category in enabled_default_categories(whitelist):
        packages |= SUPPORTING_SERVICES[category]
    return frozenset(packages)


def is_security_risk(package_id: str) -> bool:
    return bool(package_id) and package_id in SECURITY_RISK_PACKAGES


def authorize(
    package_id: str,
    whitelist: WhitelistRecord,
    self_ids: Iterable[str] | None = None,
) -> AuthorizationDecision:
    """Maps a foreground package to allow/block. Pure: no I/O."""
    identities = set(self_ids if self_ids is not None else settings.app_identities)

    def decide(verdict: Verdict, category: RuleCategory) -> AuthorizationDecision:
        return AuthorizationDecision(package_id, verdict, category)

    if not package_id:
        return decide(Verdict.BLOCK, RuleCategory.UNLISTED)
    if package_id in identities:
        return decide(Verdict.ALLOW, RuleCategory.SELF)
    if package_id in SECURITY_RISK_PACKAGES:
        return decide(Verdict.BLOCK, RuleCategory.SECURITY_RISK)
    if package_id in ESSENTIAL_SYSTEM_PACKAGES:
        return decide(Verdict.ALLOW, RuleCategory.ESSENTIAL_SYSTEM)
    if package_id in whitelist.apps:
        return decide(Verdict.ALLOW, RuleCategory.USER_WHITELIST)
    if package_id in default_app_packages(whitelist):
        return decide(Verdict.ALLOW, RuleCategory.DEFAULT_APP)
    if package_id in supporting_packages(whitelist):
        return decide(Verdict.ALLOW, RuleCategory.SUPPORTING_SERVICE)
    return decide(Verdict.BLOCK, RuleCategory.UNLISTED)


class WhitelistManager:
    """Edits the persisted whitelist and default-app toggles."""

    def __init__(self, store: StateStore, max_additional_apps: int | None = None):
        self.store = store
        self.max_additional_apps = max_additional_apps or settings.max_additional_apps

    def snapshot(self) -> WhitelistRecord:
        return self.store.load().whitelist

    def add(self, package_id: str) -> WhitelistRecord:
        package_id = package_id.strip()
        if not package_id:
            raise WhitelistError("Package id must not be empty.")
        if is_security_risk(package_id):
            raise WhitelistError(f"{package_id} can be used to bypass focus sessions and cannot be whitelisted.")

        with self.store.transaction() as state:
            apps = state.whitelist.apps
            if package_id in apps:
                return state.whitelist
            if package_id in default_app_packages(state.whitelist):
                logger.info(f"{package_id} is already allowed as a default app")
                return state.whitelist
            if len(apps) >= self.max_additional_apps:
                raise WhitelistError(
                    f"Whitelist is full ({len(apps)}/{self.max_additional_apps}). Remove an app first."
                )
            apps.add(package_id)
            whitelist = state.whitelist

        logger.info(f"Whitelisted {package_id}")
        return whitelist

    def remove(self, package_id: str) -> bool:
        with self.store.transaction() as state:
            if package_id not in state.whitelist.apps:
                return False
            state.whitelist.apps.discard(package_id)
        logger.info(f"Removed {package_id} from whitelist")
        return True

    def set_default_app(self, category: str, enabled: bool) -> WhitelistRecord:
        if category not in DEFAULT_APPS:
            raise WhitelistError(f"Unknown default app: {category} (choose from {', '.join(DEFAULT_APPS)})")
        with self.store.transaction() as state:
            setattr(state.whitelist, f"allow_{category}_app", enabled)
            whitelist = state.whitelist
        return whitelist

    def allowed_packages(self) -> set[str]:
        """Every package the whitelist rules would allow, for display."""
        whitelist = self.snapshot()
        return (
            set(ESSENTIAL_SYSTEM_PACKAGES)
            | whitelist.apps
            | default_app_packages(whitelist)
            | supporting_packages(whitelist)
        )

# CCB Desktop
# Controller for the local chat bridge: launches and supervises the bridge
# process, polls its control API, and edits its configuration file.
# Created: 2026-03-02

try:
    from importlib.metadata import version as _meta_version

    __version__ = _meta_version("ccb-desktop")
except Exception:
    # Running from a source checkout without installed metadata
    import os

    __version__ = os.environ.get("CCB_DESKTOP_VERSION", "0.1.0")

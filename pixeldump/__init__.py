"""Bug-report log collection, dumpstate sections, GPT/devinfo handling and A/B boot control."""

__version__ = "0.1.0"

__all__ = [
    "bootctrl",
    "devinfo",
    "dump",
    "dumpstate",
    "gpt",
    "hidl_bootctrl",
    "log_collectors",
    "properties",
]
import logging
import os
import sys


def get_logger(name: str = "nodeprov"):
    root = logging.getLogger("nodeprov")
    if not root.handlers:
        h = logging.StreamHandler(sys.stdout)
        fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s %(message)s")
        h.setFormatter(fmt)
        root.addHandler(h)
        root.setLevel(os.getenv("NODEPROV_LOG_LEVEL", "INFO").upper())
    if name == "nodeprov":
        return root
    return root.getChild(name)

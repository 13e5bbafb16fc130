"""
Entry-point launcher for the portal session client.

Run from the project root without installing:
    python run.py status
    python run.py login student@college.edu
"""
import sys
import os

# Ensure src/ is on the path regardless of where we are launched from
_HERE = os.path.dirname(os.path.abspath(__file__))
_SRC = os.path.join(_HERE, "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from portal_client.main import main

if __name__ == "__main__":
    sys.exit(main())

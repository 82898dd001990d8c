"""Allow running as: python -m compliance_draft"""

from compliance_draft.main import run, serve
import sys

if __name__ == "__main__":
    if "--serve" in sys.argv:
        serve()
    else:
        run()

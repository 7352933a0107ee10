"""proc-deputy 入口点。

支持: python -m proc_deputy
"""

from .app import main

if __name__ == "__main__":
    raise SystemExit(main())

"""CLI Session Hub 入口点。

支持: python -m cli_session_hub
"""

from .app import main

if __name__ == "__main__":
    main()

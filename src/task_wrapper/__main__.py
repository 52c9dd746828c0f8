"""task-wrapper entry point.

Supports: python -m task_wrapper
"""

from .app import main

if __name__ == "__main__":
    main()

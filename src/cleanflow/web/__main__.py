"""Entry point: python -m cleanflow.web"""

from cleanflow.web.launcher import main

if __name__ == "__main__":
    main()

"""Run the config-sync command line tool with `python -m config_sync`."""

from config_sync.tool.config_sync import main

if __name__ == "__main__":
    main()

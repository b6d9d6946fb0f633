"""
confmanager Services

- broker - scans the configuration directory and serves each application on the bus
- client - keeps a live copy of one application's configuration
"""

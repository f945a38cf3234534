#!/usr/bin/env python3
from gpon_monitor.main import run

if __name__ == "__main__":
    run()

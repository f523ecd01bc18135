"""
Centralized path configuration for Nomad VMonitor
"""

import os

# Only used for the optional rotating log file
DATA_DIR = os.getenv('VMONITOR_DATA_DIR', './data')

LOG_DIR = os.path.join(DATA_DIR, 'logs')

LOG_FILE = os.path.join(LOG_DIR, 'vmonitor.log')

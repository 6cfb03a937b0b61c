"""
rtupoll - Modbus RTU device poller
"""

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

__version__ = '0.1.0'

# Configure logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO'),
    format=os.environ.get(
        'LOG_FORMAT',
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
)
logger = logging.getLogger(__name__)


def load_env_files():
    """Load environment variables from .env files in project directories."""
    # Try to load from current directory
    if load_dotenv(dotenv_path='.env'):
        logger.debug('Loaded .env from current directory')

    # Try to load from the project root
    project_env = Path(__file__).parent.parent / '.env'
    if project_env.exists() and load_dotenv(dotenv_path=project_env):
        logger.debug(f'Loaded .env from {project_env}')


# Load environment variables
load_env_files()

# Import components after environment is configured
from rtupoll.config import Settings  # noqa: E402
from rtupoll.devices import DeviceSpec, load_devices  # noqa: E402
from rtupoll.formatter import format_result, format_values  # noqa: E402
from rtupoll.results import CoilResult, RegisterResult  # noqa: E402
from rtupoll.rtu import RtuClient, SerialSession  # noqa: E402
from rtupoll.scheduler import PollingScheduler, SchedulerState  # noqa: E402
from rtupoll.sink import LogResultSink, ResultSink, SqlResultSink  # noqa: E402


__all__ = [
    'Settings',
    'DeviceSpec',
    'load_devices',
    'format_result',
    'format_values',
    'CoilResult',
    'RegisterResult',
    'RtuClient',
    'SerialSession',
    'PollingScheduler',
    'SchedulerState',
    'ResultSink',
    'SqlResultSink',
    'LogResultSink',
    'load_env_files',
]

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

PACKAGE_DIR = Path(__file__).parent


class Config:
    # Persistence
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///signflow.db')

    # Template definitions (YAML + JSON schema)
    TEMPLATES_DIR = Path(os.getenv('TEMPLATES_DIR', str(PACKAGE_DIR.parent / 'templates')))

    # Email normalization
    DOMAIN_TYPOS_PATH = Path(os.getenv('DOMAIN_TYPOS_PATH', str(PACKAGE_DIR / 'data' / 'domain_typos.yml')))
    EMAIL_FIX_MAX_DISTANCE = int(os.getenv('EMAIL_FIX_MAX_DISTANCE', 3))

    # Workflow
    DEFAULT_SUBMITTERS_ORDER = os.getenv('DEFAULT_SUBMITTERS_ORDER', 'random')
    SEND_DELAY_SECONDS = int(os.getenv('SEND_DELAY_SECONDS')) if os.getenv('SEND_DELAY_SECONDS') else None

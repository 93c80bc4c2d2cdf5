"""
Configuration for the order/payment lifecycle services.
Contains payment expiry, gateway policy, reliability retries, event bus, logging and database settings.
"""

from decimal import Decimal
from typing import Any, Dict
import copy

# Base configuration structure
BASE_LIFECYCLE_CONFIG: Dict[str, Any] = {
    'payments': {
        'expiry_minutes': 30,                         # Payment record lifetime before the expiry sweep cancels it
        'allow_mock_gateway': True,                   # Accept MOCK payments
        'require_callback_signature': True,           # Reject gateway callbacks without a signature
        'mock_success_probability': Decimal('0.3'),   # Chance a pending MOCK payment settles per sweep
        'mock_batch_size': 10                         # Pending MOCK payments examined per sweep
    },
    'reliability': {
        'max_attempts': 5,                 # Attempts to apply a payment success to its order
        'initial_delay_seconds': 1.0,      # First backoff delay
        'backoff_multiplier': 2,           # Delay multiplier between attempts
        'max_delay_seconds': 30.0,         # Backoff ceiling
        'inconsistency_cutoff_seconds': 300  # Age before a PENDING order with a settled payment is repaired
    },
    'orders': {
        'max_notes_length': 500,
        'max_shipping_address_length': 200
    },
    # <Event System Configuration - Begin>
    'event_system': {
        'event_bus': {
            'enabled': True,              # Enable Event Bus system
            'enable_logging': True,       # Log event publishing/subscriptions
            'max_subscribers': 50,        # Maximum subscribers per event type
        }
    },
    # <Event System Configuration - End>
    'logging': {
        'log_dir': 'logs',
        'session_prefix': 'lifecycle_session',
        'max_events_per_second': 50,
        'max_recursion_depth': 3,
        'min_importance': 'MEDIUM'        # HIGH, MEDIUM, LOW
    },
    'database': {
        'db_path': 'fresh_market.db',
        'echo': False
    }
}

# Development configuration - same as base with verbose logging
DEVELOPMENT_CONFIG = copy.deepcopy(BASE_LIFECYCLE_CONFIG)
DEVELOPMENT_CONFIG['logging'].update({
    'min_importance': 'LOW'
})
DEVELOPMENT_CONFIG['database'].update({
    'db_path': 'fresh_market_dev.db'
})

# Production configuration - no mock settlement, more patient retries
PRODUCTION_CONFIG = copy.deepcopy(BASE_LIFECYCLE_CONFIG)
PRODUCTION_CONFIG['payments'].update({
    'allow_mock_gateway': False,
    'mock_success_probability': Decimal('0')
})
PRODUCTION_CONFIG['reliability'].update({
    'max_attempts': 8,
    'max_delay_seconds': 120.0
})

# Environment configurations
CONFIGS = {
    'development': DEVELOPMENT_CONFIG,
    'production': PRODUCTION_CONFIG,
    'default': BASE_LIFECYCLE_CONFIG
}


def get_config(environment: str = 'default') -> Dict[str, Any]:
    """
    Get lifecycle configuration for specific environment.

    Args:
        environment: Configuration environment ('development', 'production', 'default')

    Returns:
        Configuration dictionary for the specified environment.

    Raises:
        ValueError: If the requested environment is not found.
    """
    if environment not in CONFIGS:
        raise ValueError(f"Unknown lifecycle environment: {environment}. "
                         f"Available: {list(CONFIGS.keys())}")

    # Return a deep copy to prevent accidental mutation
    return copy.deepcopy(CONFIGS[environment])


def validate_config(config: Dict[str, Any]) -> tuple[bool, str]:
    """
    Validate lifecycle configuration.

    Args:
        config: Configuration dictionary to validate.

    Returns:
        Tuple of (is_valid, error_message)
    """
    required_sections = ['payments', 'reliability', 'event_system', 'logging']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required section: {section}"

    payments = config['payments']
    for key in ['expiry_minutes', 'allow_mock_gateway', 'mock_success_probability']:
        if key not in payments:
            return False, f"Missing required payments key: {key}"
    if payments['expiry_minutes'] <= 0:
        return False, "expiry_minutes must be positive"
    if not Decimal('0') <= payments['mock_success_probability'] <= Decimal('1'):
        return False, "mock_success_probability must be between 0 and 1"
    if payments.get('mock_batch_size', 1) <= 0:
        return False, "mock_batch_size must be positive"

    reliability = config['reliability']
    if reliability.get('max_attempts', 0) < 1:
        return False, "max_attempts must be at least 1"
    if reliability.get('initial_delay_seconds', 0) < 0:
        return False, "initial_delay_seconds must be non-negative"
    if reliability.get('backoff_multiplier', 1) < 1:
        return False, "backoff_multiplier must be at least 1"
    if reliability.get('max_delay_seconds', 0) < reliability.get('initial_delay_seconds', 0):
        return False, "max_delay_seconds must not be below initial_delay_seconds"
    if reliability.get('inconsistency_cutoff_seconds', 0) < 0:
        return False, "inconsistency_cutoff_seconds must be non-negative"

    # <Event System Configuration Validation - Begin>
    event_bus_config = config['event_system'].get('event_bus', {})
    if 'max_subscribers' in event_bus_config and event_bus_config['max_subscribers'] <= 0:
        return False, "event_bus.max_subscribers must be positive"
    # <Event System Configuration Validation - End>

    logging_config = config['logging']
    if logging_config.get('min_importance', 'MEDIUM') not in ('HIGH', 'MEDIUM', 'LOW'):
        return False, "min_importance must be one of HIGH, MEDIUM, LOW"
    if logging_config.get('max_events_per_second', 1) <= 0:
        return False, "max_events_per_second must be positive"

    return True, "Configuration is valid"

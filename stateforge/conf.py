"""
Settings for the stateforge app.

Values come from the STATEFORGE dictionary in the Django settings, merged over
DEFAULTS. Only the view layer reads them; the engines take explicit options.
"""
from typing import Any, Dict, Optional

from django.conf import settings

from .simulation import FINAL_STATE, SimulationOptions
from .tape import BLANK

DEFAULTS: Dict[str, Any] = {
    'APP_NAME': 'StateForge',
    'MAX_STEPS': 1000,
    'MAX_CONFIGURATIONS': 10000,
    'PDA_ACCEPTANCE': FINAL_STATE,
    'INITIAL_STACK_SYMBOL': 'Z',
    'BLANK_SYMBOL': BLANK,
}

# Request body keys that may override a setting for one call
_OVERRIDES = {
    'max_steps': 'MAX_STEPS',
    'max_configurations': 'MAX_CONFIGURATIONS',
    'acceptance': 'PDA_ACCEPTANCE',
    'initial_stack_symbol': 'INITIAL_STACK_SYMBOL',
    'blank_symbol': 'BLANK_SYMBOL',
}


def get_settings() -> Dict[str, Any]:
    merged = dict(DEFAULTS)
    merged.update(getattr(settings, 'STATEFORGE', {}))
    return merged


def get_setting(name: str) -> Any:
    return get_settings()[name]


def simulation_options(overrides: Optional[Dict[str, Any]] = None) -> SimulationOptions:
    """
    Build SimulationOptions from the settings, letting a request override them.

    Args:
        overrides: Request body options keyed like SimulationOptions fields

    Raises:
        ValueError: If an override has the wrong type or an invalid value
    """
    values = get_settings()
    for key, name in _OVERRIDES.items():
        if overrides and key in overrides:
            values[name] = overrides[key]

    for name in ('MAX_STEPS', 'MAX_CONFIGURATIONS'):
        if isinstance(values[name], bool) or not isinstance(values[name], int):
            raise ValueError(f"{name.lower()} must be an integer")

    return SimulationOptions(
        max_steps=values['MAX_STEPS'],
        max_configurations=values['MAX_CONFIGURATIONS'],
        acceptance=values['PDA_ACCEPTANCE'],
        initial_stack_symbol=values['INITIAL_STACK_SYMBOL'] or None,
        blank_symbol=values['BLANK_SYMBOL'],
    )

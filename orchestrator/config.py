"""Immutable pipeline configuration and the facility catalog."""
import logging
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from processor.exceptions import UnknownFacility

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RinkConfig:
    rink_id: str
    rink_name: str


@dataclass(frozen=True)
class FacilityConfig:
    """Static description of one facility and how to scrape it."""
    facility_id: str
    facility_name: str
    display_name: str
    source_url: str
    adapter: str
    rinks: Tuple[RinkConfig, ...] = ()
    options: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, 'rinks', tuple(self.rinks))
        object.__setattr__(self, 'options', MappingProxyType(dict(self.options)))

    @property
    def primary_rink_id(self) -> str:
        return self.rinks[0].rink_id if self.rinks else self.facility_id

    def option(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)

    def rink_name(self, rink_id: str) -> str:
        for rink in self.rinks:
            if rink.rink_id == rink_id:
                return rink.rink_name
        return self.facility_name


BIG_BEAR_RESERVATION_TYPES = (
    -1, 203425, 208508, 215333, 182117, 227573, 217778, 215383,
    271335, 285107, 218387, 215334, 190860, 215332, 224028,
)
BIG_BEAR_RESOURCES = (-1, 268382, 268383, 309500, 350941, 354858, 396198)
WEEKDAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')


def _big_bear_form() -> dict:
    form = {'LocationId': '13558', 'StartTime': '12:00 AM', 'EndTime': '12:00 AM'}
    form.update({day: 'true' for day in WEEKDAYS})
    for index, type_id in enumerate(BIG_BEAR_RESERVATION_TYPES):
        form[f'ReservationTypes[{index}].Id'] = str(type_id)
        form[f'ReservationTypes[{index}].Selected'] = 'true' if index == 0 else 'false'
    for index, resource_id in enumerate(BIG_BEAR_RESOURCES):
        form[f'Resources[{index}].Id'] = str(resource_id)
        form[f'Resources[{index}].Selected'] = 'true' if index == 0 else 'false'
    return form


DU_RITCHIE_CALENDARS = (
    '4u0hkl9u6ii0o39uk1v90nnv6o@group.calendar.google.com',
    'qtst6uerc2tamp5pbn2p4n4dko@group.calendar.google.com',
    'pc78u2neckrn16pj4v92r6mufg@group.calendar.google.com',
    '6ej1qanm6fjqmpgkgpu114vijc@group.calendar.google.com',
)

APEX_BASE_URL = 'https://anc.apm.activecommunities.com/apexprd'
APEX_CALENDARS = (
    (4, 'Stick and Puck'),
    (6, 'Public Skate'),
    (5, 'Freestyle/Figure Skating'),
    (7, 'Adult Coffee Skate'),
)

_CATALOG = (
    FacilityConfig(
        facility_id='ice-ranch',
        facility_name='The Ice Ranch',
        display_name='The Ice Ranch (Littleton)',
        source_url='https://www.theiceranch.com/page/show/1652320-calendar',
        adapter='html_table',
        rinks=(RinkConfig('ice-ranch', 'Main Rink'),),
        options={'ambiguous_meridiem': True}
    ),
    FacilityConfig(
        facility_id='big-bear',
        facility_name='Big Bear Ice Arena',
        display_name='Big Bear Ice Arena (Denver)',
        source_url='https://bigbearicearena.ezfacility.com/Sessions',
        adapter='form_api',
        rinks=(RinkConfig('big-bear', 'Main Rink'),),
        options={
            'endpoint': 'https://bigbearicearena.ezfacility.com/Sessions/FilterResults',
            'form': _big_bear_form(),
            'days_before': 3,
            'days_after': 32,
        }
    ),
    FacilityConfig(
        facility_id='du-ritchie',
        facility_name='DU Ritchie Center',
        display_name='DU Ritchie Center (Denver)',
        source_url='https://ritchiecenter.du.edu/sports/ice-programs',
        adapter='ical',
        rinks=(RinkConfig('du-ritchie', 'Main Rink'),),
        options={'calendar_ids': DU_RITCHIE_CALENDARS}
    ),
    FacilityConfig(
        facility_id='foothills-edge',
        facility_name='Foothills Edge Ice Arena',
        display_name='Foothills Edge Ice Arena (Littleton)',
        source_url='https://calendar.ifoothills.org/calendars/edge-ice-arena-drop.php',
        adapter='embedded_json',
        rinks=(RinkConfig('foothills-edge', 'Main Rink'),),
        options={'array_keys': ('events',)}
    ),
    FacilityConfig(
        facility_id='ssprd-family-sports',
        facility_name='Family Sports Center',
        display_name='Family Sports Center (Centennial)',
        source_url='https://ssprd.finnlyconnect.com/schedule/249',
        adapter='embedded_json',
        rinks=(
            RinkConfig('fsc-avalanche', 'FSC Avalanche Rink'),
            RinkConfig('fsc-fixit', 'FSC Fix-it 24/7 Rink'),
        ),
        options={
            'array_keys': ('_onlineScheduleList',),
            'rink_map': {'1904': 'fsc-avalanche', '1905': 'fsc-fixit'},
        }
    ),
    FacilityConfig(
        facility_id='ssprd-sports-complex',
        facility_name='South Suburban Sports Complex',
        display_name='South Suburban Sports Complex (Littleton)',
        source_url='https://ssprd.finnlyconnect.com/schedule/250',
        adapter='embedded_json',
        rinks=(
            RinkConfig('sssc-rink1', 'SSSC Rink 1'),
            RinkConfig('sssc-rink2', 'SSSC Rink 2'),
            RinkConfig('sssc-rink3', 'SSSC Rink 3'),
        ),
        options={
            'array_keys': ('_onlineScheduleList',),
            'rink_map': {'1906': 'sssc-rink1', '1907': 'sssc-rink2', '1908': 'sssc-rink3'},
        }
    ),
    FacilityConfig(
        facility_id='apex-ice',
        facility_name='Apex Center Ice Arena',
        display_name='Apex Center Ice Arena (Arvada)',
        source_url=f'{APEX_BASE_URL}/calendars',
        adapter='session_api',
        rinks=(
            RinkConfig('apex-ice-east', 'East Rink'),
            RinkConfig('apex-ice-west', 'West Rink'),
        ),
        options={
            'api_url': f'{APEX_BASE_URL}/rest/onlinecalendar/multicenter/events?locale=en-US',
            'origin': APEX_BASE_URL,
            'center_ids': (3,),
            'calendars': APEX_CALENDARS,
            'rink_keywords': {'West': 'apex-ice-west', 'East': 'apex-ice-east'},
        }
    ),
)

FACILITY_CATALOG: Mapping[str, FacilityConfig] = MappingProxyType(
    {facility.facility_id: facility for facility in _CATALOG}
)


def get_facility(
    facility_id: str,
    catalog: Mapping[str, FacilityConfig] = FACILITY_CATALOG
) -> FacilityConfig:
    try:
        return catalog[facility_id]
    except KeyError:
        raise UnknownFacility(f"Unknown facility: {facility_id}")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class PipelineConfig:
    """Runtime settings, read once from the environment at startup."""
    table_name: str = 'rink-schedule-data'
    log_level: str = 'INFO'
    facility_ids: Tuple[str, ...] = tuple(FACILITY_CATALOG)
    scraper_endpoint_template: Optional[str] = None
    splay_minutes: float = 60.0
    timeout_seconds: float = 30.0
    facility_timeout_seconds: float = 300.0
    reference_timezone: str = 'America/Denver'
    run_interval_hours: float = 6.0
    window_days: int = 30
    use_relays: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'PipelineConfig':
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            PipelineConfig instance

        Raises:
            UnknownFacility: If FACILITY_IDS names a facility missing from the
                catalog while no remote scraper endpoint is configured
            ValueError: If a numeric variable is malformed
        """
        env = os.environ if environ is None else environ

        raw_ids = env.get('FACILITY_IDS', '')
        facility_ids = tuple(
            facility_id.strip() for facility_id in raw_ids.split(',') if facility_id.strip()
        ) or tuple(FACILITY_CATALOG)

        template = env.get('SCRAPER_ENDPOINT_TEMPLATE') or None
        if template is None:
            for facility_id in facility_ids:
                get_facility(facility_id)

        config = cls(
            table_name=env.get('TABLE_NAME', cls.table_name),
            log_level=env.get('LOG_LEVEL', cls.log_level),
            facility_ids=facility_ids,
            scraper_endpoint_template=template,
            splay_minutes=float(env.get('SPLAY_MINUTES', cls.splay_minutes)),
            timeout_seconds=float(env.get('TIMEOUT_SECONDS', cls.timeout_seconds)),
            facility_timeout_seconds=float(
                env.get('FACILITY_TIMEOUT_SECONDS', cls.facility_timeout_seconds)
            ),
            reference_timezone=env.get('REFERENCE_TIMEZONE', cls.reference_timezone),
            run_interval_hours=float(env.get('RUN_INTERVAL_HOURS', cls.run_interval_hours)),
            window_days=int(env.get('WINDOW_DAYS', cls.window_days)),
            use_relays=_env_bool(env.get('USE_RELAYS', 'true'))
        )

        logger.debug(
            f"Loaded configuration for {len(config.facility_ids)} facilities",
            extra={'table_name': config.table_name, 'splay_minutes': config.splay_minutes}
        )
        return config

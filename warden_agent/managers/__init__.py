from .state import AgentState
from .firewall import Firewall, NetworkAclFirewall, create_firewall
from .nftables_manager import NFTablesFirewall
from .blocker import Blocker
from .geolocation import GeoResolver
from .heartbeat import HeartbeatSender, collect_system_stats
from .updater import Updater, verify_signature

__all__ = [
    'AgentState',
    'Firewall',
    'NetworkAclFirewall',
    'NFTablesFirewall',
    'create_firewall',
    'Blocker',
    'GeoResolver',
    'HeartbeatSender',
    'collect_system_stats',
    'Updater',
    'verify_signature'
]

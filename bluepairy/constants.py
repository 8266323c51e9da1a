"""D-Bus names and tuning constants for talking to the BlueZ daemon.

Object paths, interface names and property names used on the system bus,
plus the well-known profile UUIDs and timeouts the pairing run relies on.
"""

# ============================================================================
# BUS NAMES AND OBJECT PATHS
# ============================================================================

BLUEZ_SERVICE = "org.bluez"
BLUEZ_ROOT_PATH = "/"
AGENT_MANAGER_PATH = "/org/bluez"

# Our own exported agent object
AGENT_PATH = "/bluepairy/agent"
AGENT_CAPABILITY = "DisplayYesNo"

# Signals we want delivered to this connection
SIGNAL_MATCH_RULE = f"type='signal',sender='{BLUEZ_SERVICE}'"

DBUS_SERVICE = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"

# ============================================================================
# INTERFACES
# ============================================================================

ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"
AGENT_INTERFACE = "org.bluez.Agent1"
AGENT_MANAGER_INTERFACE = "org.bluez.AgentManager1"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"

# ============================================================================
# MEMBERS
# ============================================================================

# Signals
PROPERTIES_CHANGED = "PropertiesChanged"
INTERFACES_ADDED = "InterfacesAdded"
INTERFACES_REMOVED = "InterfacesRemoved"

# Outgoing method calls
GET_MANAGED_OBJECTS = "GetManagedObjects"
SET_PROPERTY = "Set"
START_DISCOVERY = "StartDiscovery"
STOP_DISCOVERY = "StopDiscovery"
REMOVE_DEVICE = "RemoveDevice"
PAIR = "Pair"
CONNECT_PROFILE = "ConnectProfile"
REGISTER_AGENT = "RegisterAgent"
UNREGISTER_AGENT = "UnregisterAgent"
REQUEST_DEFAULT_AGENT = "RequestDefaultAgent"
ADD_MATCH = "AddMatch"

# Agent methods we answer
REQUEST_PIN_CODE = "RequestPinCode"
REQUEST_CONFIRMATION = "RequestConfirmation"
HANDLED_AGENT_METHODS = frozenset({REQUEST_PIN_CODE, REQUEST_CONFIRMATION})

# ============================================================================
# PROPERTIES
# ============================================================================

PROP_ADAPTER = "Adapter"
PROP_ADDRESS = "Address"
PROP_CONNECTED = "Connected"
PROP_DISCOVERING = "Discovering"
PROP_NAME = "Name"
PROP_PAIRED = "Paired"
PROP_POWERED = "Powered"
PROP_TRUSTED = "Trusted"
PROP_UUIDS = "UUIDs"

# ============================================================================
# ERRORS
# ============================================================================

BLUEZ_ERROR_PREFIX = "org.bluez.Error."
ERROR_IN_PROGRESS = "org.bluez.Error.InProgress"
ERROR_REJECTED = "org.bluez.Error.Rejected"

# ============================================================================
# PROFILE UUIDS
# ============================================================================

HIDP_UUID = "00000011-0000-1000-8000-00805f9b34fb"
SPP_UUID = "00001101-0000-1000-8000-00805f9b34fb"

# ============================================================================
# TIMING (seconds)
# ============================================================================

DEFAULT_DISCOVERY_TIMEOUT = 300.0
DEFAULT_CONFIRM_TIMEOUT = 1.0
DEFAULT_POLL_INTERVAL = 0.1
CALL_TIMEOUT = 25.0  # libdbus default reply timeout

# PIN answered when no known name template applies
FALLBACK_PIN = "0000"

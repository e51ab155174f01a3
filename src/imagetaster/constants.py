"""Fixed names and timeouts used by tasting sessions."""

INSTANCE_FLAVOR_NAME = "m1.tiny"
INSTANCE_NAME_PREFIX = "taster"
INSTANCE_VOLUME_MOUNT_POINT = "/mnt/taster_volume"
DEFAULT_NETWORK_NAME = "public"
SSH_PORT = 22

VOLUME_TEST_FILE_NAME = "info"
# The marker file holds something like 'test-vol-1 on <volume host>', so it is only logged.
VOLUME_TEST_FILE_CONTENTS = None
VOLUME_PARTITION_SUFFIX = "1"

# Seconds
TIMEOUT_INSTANCE_TO_BE_CREATED = 20
TIMEOUT_INSTANCE_STARTUP = 30
TIMEOUT_VOLUME_ATTACH = 10
TIMEOUT_VOLUME_PERSIST = 20
TIMEOUT_SSH_RETRY = 15
TIMEOUT_SNAPSHOT_ACTIVE = 600
POLL_INTERVAL = 1.0
BOOT_PROBE_INTERVAL = 2.0
BOOT_PROBE_CONNECT_TIMEOUT = 2.0

MAX_SSH_RETRY = 3

TIME_SLUG_FORMAT = "%Y%m%d_%H%M%S"
SESSION_ID_FORMAT = "%Y%m%d%H%M%S"

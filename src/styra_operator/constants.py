"""Constants for the Styra Operator."""

# API Group
API_GROUP = "styra.bankdata.dk"
API_VERSION_SYSTEM = "v1beta1"
API_VERSION_LIBRARY = "v1alpha1"
API_VERSION_GLOBAL_DATASOURCE = "v1alpha1"
API_GROUP_VERSION_SYSTEM = f"{API_GROUP}/{API_VERSION_SYSTEM}"
API_GROUP_VERSION_LIBRARY = f"{API_GROUP}/{API_VERSION_LIBRARY}"
API_GROUP_VERSION_GLOBAL_DATASOURCE = f"{API_GROUP}/{API_VERSION_GLOBAL_DATASOURCE}"

# Resource Kinds
KIND_SYSTEM = "System"
KIND_LIBRARY = "Library"
KIND_GLOBAL_DATASOURCE = "GlobalDatasource"

# Plurals
PLURAL_SYSTEMS = "systems"
PLURAL_LIBRARIES = "libraries"
PLURAL_GLOBAL_DATASOURCES = "globaldatasources"

# Labels
LABEL_CONTROLLER_CLASS = "styra-controller/class"
LABEL_CONTROL_PLANE = "styra-controller/control-plane"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_VALUE_MANAGED_BY = "styra-controller"
CONTROL_PLANE_OCP = "ocp"

# Annotations
ANNOTATION_MIGRATION_ID = "styra-controller/migration-id"
ANNOTATION_RESTARTED_AT = "kubectl.kubernetes.io/restartedAt"

# Finalizers
FINALIZER = f"{API_GROUP}/finalizer"

# Field Manager
FIELD_MANAGER = "styra-operator"
CONTROLLER_NAME = "styra-operator"

# System phases
PHASE_PENDING = "Pending"
PHASE_FAILED = "Failed"
PHASE_CREATED = "Created"

# Condition Types
COND_CREATED_IN_STYRA = "CreatedInStyra"
COND_GIT_CREDENTIALS_UPDATED = "GitCredentialsUpdated"
COND_SUBJECTS_UPDATED = "SubjectsUpdated"
COND_DATASOURCES_UPDATED = "DatasourcesUpdated"
COND_OPA_TOKEN_UPDATED = "OPATokenUpdated"
COND_OPA_CONFIGMAP_UPDATED = "OPAConfigMapUpdated"
COND_OPA_UP_TO_DATE = "OPAUpToDate"
COND_SLP_CONFIGMAP_UPDATED = "SLPConfigMapUpdated"
COND_SLP_UP_TO_DATE = "SLPUpToDate"
COND_SYSTEM_CONFIG_UPDATED = "SystemConfigUpdated"
COND_S3_CREDENTIALS_UPDATED = "S3CredentialsUpdated"

# Event Reasons
EVENT_REASON_RECONCILE_STARTED = "ReconcileStarted"
EVENT_REASON_RECONCILE_COMPLETED = "ReconciliationCompleted"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_ERROR_SET_FINALIZER = "ErrorSetFinalizer"
EVENT_ERROR_FETCH_SYSTEM = "ErrorFetchSystemFromStyra"
EVENT_ERROR_CREATE_SYSTEM = "ErrorCreateSystemInStyra"
EVENT_ERROR_DELETE_SYSTEM = "ErrorDeleteSystemInStyra"
EVENT_ERROR_UPDATE_SYSTEM = "ErrorUpdateSystem"
EVENT_ERROR_DELETE_DEFAULT_POLICY = "ErrorDeleteDefaultPolicy"
EVENT_ERROR_RECONCILE_ID = "ErrorReconcileID"
EVENT_ERROR_CREDENTIALS_SECRET_NOT_FOUND = "ErrorCredentialsSecretNotFound"
EVENT_ERROR_CREDENTIALS_SECRET_FETCH = "ErrorCredentialsSecretCouldNotFetch"
EVENT_ERROR_CREATE_UPDATE_SECRET = "ErrorCreateUpdateSecret"
EVENT_ERROR_GET_USERS = "ErrorGetUsersFromStyra"
EVENT_ERROR_CREATE_INVITATION = "ErrorCreateInvitation"
EVENT_ERROR_GET_ROLEBINDINGS = "ErrorGetSystemRolebindings"
EVENT_ERROR_CREATE_ROLEBINDING = "ErrorCreateRolebinding"
EVENT_ERROR_UPDATE_ROLEBINDING = "ErrorUpdateRolebinding"
EVENT_ERROR_UPSERT_DATASOURCE = "ErrorUpsertDatasource"
EVENT_ERROR_DELETE_DATASOURCE = "ErrorDeleteDatasource"
EVENT_ERROR_CALL_WEBHOOK = "ErrorCallWebhook"
EVENT_ERROR_FETCH_OPA_CONFIG = "ErrorFetchOPAConfig"
EVENT_ERROR_OPA_TOKEN_NO_TOKEN = "ErrorOPATokenSecretNoToken"
EVENT_ERROR_OPA_TOKEN_SECRET = "ErrorOPATokenSecret"
EVENT_ERROR_OPA_CONFIGMAP = "ErrorOPAConfigMap"
EVENT_ERROR_SLP_CONFIGMAP = "ErrorSLPConfigMap"
EVENT_ERROR_CONVERT_OPA_CONF = "ErrorConvertOPAConf"
EVENT_ERROR_NOT_OWNED_BY_CONTROLLER = "ErrorNotOwnedByController"
EVENT_ERROR_RESTART_SLPS = "ErrorRestartSLPs"
EVENT_ERROR_PUT_SOURCE = "ErrorPutSource"
EVENT_ERROR_PUT_BUNDLE = "ErrorPutBundle"
EVENT_ERROR_DELETE_OCP_RESOURCES = "ErrorDeleteOCPResources"
EVENT_ERROR_S3_CREDENTIALS = "ErrorS3Credentials"

# Secret keys
SECRET_KEY_TOKEN = "token"
SECRET_KEY_GIT_NAME = "name"
SECRET_KEY_GIT_SECRET = "secret"
SECRET_KEY_GIT_USERNAME_DEPRECATED = "username"
SECRET_KEY_GIT_PASSWORD_DEPRECATED = "password"
AWS_SECRET_NAME_KEY_ID = "AWS_ACCESS_KEY_ID"
AWS_SECRET_NAME_SECRET_KEY = "AWS_SECRET_ACCESS_KEY"
AWS_SECRET_NAME_REGION = "AWS_REGION"

# ConfigMap keys
CONFIGMAP_KEY_OPA = "opa-conf.yaml"
CONFIGMAP_KEY_SLP = "slp.yaml"

# Token paths mounted into sidecars
OPA_TOKEN_PATH = "/etc/opa/auth/token"
SLP_TOKEN_PATH = "/etc/slp/auth/token"

# DAS roles and subject kinds
ROLE_SYSTEM_VIEWER = "SystemViewer"
ROLE_SYSTEM_POLICY_EDITOR = "SystemPolicyEditor"
ROLE_LIBRARY_VIEWER = "LibraryViewer"
ROLE_BINDING_KIND_SYSTEM = "system"
ROLE_BINDING_KIND_LIBRARY = "library"
SUBJECT_KIND_USER = "user"
SUBJECT_KIND_CLAIM = "claim"
SPEC_SUBJECT_KIND_USER = "user"
SPEC_SUBJECT_KIND_GROUP = "group"

# Datasource categories
DATASOURCE_CATEGORY_REST = "rest"

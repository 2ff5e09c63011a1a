# ==========================================
# 1. Cloud Assembly Files
# ==========================================
CLOUD_ASSEMBLY_DIR_NAME = "cdk.out"
MANIFEST_FILE_NAME = "manifest.json"
CONTEXT_FILE_NAME = "cdk.context.json"
DEPLOYER_CONFIG_FILE_NAME = "cdk-deployer.json"

# Artifact types in manifest.json
STACK_ARTIFACT_TYPE = "aws:cloudformation:stack"
ASSET_MANIFEST_ARTIFACT_TYPE = "cdk:asset-manifest"

# Legacy asset metadata entry type
ASSET_METADATA_TYPE = "aws:cdk:asset"

# Resource type emitted into every synthesized template; never counts as a
# declared resource.
CDK_METADATA_RESOURCE_TYPE = "AWS::CDK::Metadata"

# ==========================================
# 2. Environments
# ==========================================
ENVIRONMENT_SCHEME = "aws://"
UNKNOWN_ACCOUNT = "unknown-account"
UNKNOWN_REGION = "unknown-region"

# ==========================================
# 3. Synthesis Child Process
# ==========================================
OUTPUT_DIRECTORY_VARIABLE_NAME = "CDK_OUTDIR"
DEFAULT_ACCOUNT_VARIABLE_NAME = "CDK_DEFAULT_ACCOUNT"
DEFAULT_REGION_VARIABLE_NAME = "CDK_DEFAULT_REGION"
CONTEXT_VARIABLE_NAME = "CDK_CONTEXT_JSON"

DEFAULT_MAX_CONTEXT_ROUNDS = 10

# ==========================================
# 4. Toolkit (Bootstrap) Stack
# ==========================================
DEFAULT_TOOLKIT_STACK_NAME = "CDKToolkit"

# Must match the CdkBootstrapVersion value in templates/bootstrap-template.yaml
TOOLKIT_STACK_VERSION = 25

NEW_BOOTSTRAP_VARIABLE_NAME = "CDK_NEW_BOOTSTRAP"
BOOTSTRAP_TEMPLATE_RESOURCE = "templates/bootstrap-template.yaml"
BOOTSTRAP_VERSION_RESOURCE = "CdkBootstrapVersion"

# Toolkit stack outputs
BOOTSTRAP_VERSION_OUTPUT = "BootstrapVersion"
BUCKET_NAME_OUTPUT = "BucketName"
BUCKET_DOMAIN_NAME_OUTPUT = "BucketDomainName"
IMAGE_REPOSITORY_NAME_OUTPUT = "ImageRepositoryName"

# ==========================================
# 5. CloudFormation
# ==========================================
STACK_CAPABILITIES = [
    "CAPABILITY_IAM",
    "CAPABILITY_NAMED_IAM",
    "CAPABILITY_AUTO_EXPAND",
]

# Larger template bodies must be uploaded to S3 and passed as TemplateURL
TEMPLATE_BODY_MAX_SIZE = 51200

DEFAULT_POLL_INITIAL_DELAY = 2.0
DEFAULT_POLL_MAX_DELAY = 10.0
DEFAULT_POLL_MULTIPLIER = 1.5

# ==========================================
# 6. Assets
# ==========================================
ASSET_KEY_PREFIX = "assets/"
ASSET_PREFIX_SEPARATOR = "||"
DOCKER_EXECUTABLE = "docker"

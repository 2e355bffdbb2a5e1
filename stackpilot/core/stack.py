"""The desired stack for one environment.

Pure function of the environment descriptor, the database binding and the
build artifacts. Cross-resource values are written as references and are
resolved by the applier, never here.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from stackpilot.core.naming import ResourceKind, resource_name
from stackpilot.models.artifacts import BuildArtifact
from stackpilot.models.database import DatabaseBinding
from stackpilot.models.environment import EnvironmentDescriptor
from stackpilot.models.outcomes import ConfigurationError
from stackpilot.models.resources import (
    DesiredStack,
    OutputSpec,
    ResourceSpec,
    as_json,
    ref,
)
from stackpilot.models.state import ResourceMode

logger = logging.getLogger(__name__)

# Resource keys
DOCUMENTS_KEY = "documents_bucket"
DATABASE_KEY = "database"
CREDENTIALS_KEY = "db_credentials"
BASTION_KEY = "bastion_sg"
USER_POOL_KEY = "user_pool"
USER_POOL_CLIENT_KEY = "user_pool_client"
HTTP_API_KEY = "http_api"

# Compute units. Code of the unmanaged ones is pushed by the initializer,
# so plans ignore their Code property.
MANAGED_UNITS: tuple[str, ...] = ("document_processor", "query_processor", "upload_handler")
UNMANAGED_UNITS: tuple[str, ...] = ("db_init", "auth_handler")
ALL_UNITS: tuple[str, ...] = MANAGED_UNITS + UNMANAGED_UNITS

CREDENTIAL_ENV_KEY = "DB_SECRET_ARN"
CREDENTIAL_UNITS: tuple[str, ...] = MANAGED_UNITS + ("db_init",)
ENTRY_POINT_UNIT = "query_processor"
SCHEMA_INIT_UNIT = "db_init"
HEALTH_CHECK_UNIT = "upload_handler"

# Output names
ENTRY_POINT_OUTPUT = "entry_point_address"
IDENTITY_CLIENT_OUTPUT = "identity_client_id"
CREDENTIAL_SECRET_OUTPUT = "credential_secret_id"


def unit_key(unit: str) -> str:
    return f"fn_{unit}"


def secret_payload(binding: DatabaseBinding) -> dict[str, Any]:
    """Connection document stored in the credential secret.

    The only place the two database modes are told apart when building the
    secret: a created instance's host is a reference resolved at apply time.
    """
    if binding.mode == ResourceMode.CREATED:
        host: Any = ref(DATABASE_KEY, "Endpoint.Address")
    else:
        host = binding.host
    return {
        "engine": "postgres",
        "username": binding.username,
        "password": binding.password,
        "host": host,
        "port": binding.port,
        "dbname": binding.dbname,
        "dbInstanceIdentifier": binding.identifier,
    }


def _documents_bucket(descriptor: EnvironmentDescriptor) -> ResourceSpec:
    name = resource_name(descriptor, ResourceKind.DOCUMENTS_BUCKET)
    properties: dict[str, Any] = {
        "BucketName": name,
        "VersioningConfiguration": {"Status": "Enabled"},
        "BucketEncryption": {
            "ServerSideEncryptionConfiguration": [
                {"ServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}
            ]
        },
        "PublicAccessBlockConfiguration": {
            "BlockPublicAcls": True,
            "BlockPublicPolicy": True,
            "IgnorePublicAcls": True,
            "RestrictPublicBuckets": True,
        },
    }
    if descriptor.flags.lifecycle_rules_enabled:
        properties["LifecycleConfiguration"] = {
            "Rules": [
                {
                    "Id": "archive-old-documents",
                    "Status": "Enabled",
                    "Transitions": [
                        {"StorageClass": "STANDARD_IA", "TransitionInDays": 90}
                    ],
                    "NoncurrentVersionExpiration": {"NoncurrentDays": 90},
                }
            ]
        }
    return ResourceSpec(
        key=DOCUMENTS_KEY,
        type_name="AWS::S3::Bucket",
        identifier=name,
        properties=properties,
        adoptable=True,
    )


def _bastion_group(descriptor: EnvironmentDescriptor) -> ResourceSpec:
    name = resource_name(descriptor, ResourceKind.BASTION_SG)
    properties: dict[str, Any] = {
        "GroupName": name,
        "GroupDescription": f"Database access for {descriptor.project_id} {descriptor.name}",
        "SecurityGroupIngress": [
            {
                "IpProtocol": "tcp",
                "FromPort": 5432,
                "ToPort": 5432,
                "CidrIp": descriptor.flags.ingress_allowlist,
            }
        ],
    }
    vpc_id = descriptor.setting("vpc_id")
    if vpc_id:
        properties["VpcId"] = vpc_id
    return ResourceSpec(
        key=BASTION_KEY,
        type_name="AWS::EC2::SecurityGroup",
        identifier=name,
        properties=properties,
    )


def _database(descriptor: EnvironmentDescriptor, binding: DatabaseBinding) -> ResourceSpec:
    properties: dict[str, Any] = {
        "DBInstanceIdentifier": binding.identifier,
        "Engine": "postgres",
        "EngineVersion": str(descriptor.setting("database_engine_version", "15")),
        "DBInstanceClass": descriptor.setting("database_instance_class", "db.t3.micro"),
        "AllocatedStorage": str(descriptor.setting("database_storage_gb", 20)),
        "DBName": binding.dbname,
        "MasterUsername": binding.username,
        "MasterUserPassword": binding.password,
        "PubliclyAccessible": bool(descriptor.setting("database_public", False)),
        "StorageEncrypted": True,
        "VPCSecurityGroups": [ref(BASTION_KEY, "GroupId")],
    }
    subnet_group = descriptor.setting("database_subnet_group")
    if subnet_group:
        properties["DBSubnetGroupName"] = subnet_group
    return ResourceSpec(
        key=DATABASE_KEY,
        type_name="AWS::RDS::DBInstance",
        identifier=binding.identifier,
        properties=properties,
        adoptable=True,
    )


def _credentials_secret(
    descriptor: EnvironmentDescriptor, binding: DatabaseBinding
) -> ResourceSpec:
    name = resource_name(descriptor, ResourceKind.DB_SECRET)
    return ResourceSpec(
        key=CREDENTIALS_KEY,
        type_name="AWS::SecretsManager::Secret",
        identifier=name,
        properties={
            "Name": name,
            "Description": f"Database credentials for {descriptor.project_id} {descriptor.name}",
            "SecretString": as_json(secret_payload(binding)),
        },
        adoptable=True,
        write_on_adopt=["SecretString"],
    )


def _identity(descriptor: EnvironmentDescriptor) -> list[ResourceSpec]:
    pool_name = resource_name(descriptor, ResourceKind.USER_POOL)
    client_name = resource_name(descriptor, ResourceKind.USER_POOL_CLIENT)
    return [
        ResourceSpec(
            key=USER_POOL_KEY,
            type_name="AWS::Cognito::UserPool",
            identifier=pool_name,
            properties={
                "UserPoolName": pool_name,
                "UsernameAttributes": ["email"],
                "AutoVerifiedAttributes": ["email"],
                "Policies": {
                    "PasswordPolicy": {
                        "MinimumLength": 8,
                        "RequireLowercase": True,
                        "RequireNumbers": True,
                        "RequireSymbols": False,
                        "RequireUppercase": True,
                    }
                },
            },
        ),
        ResourceSpec(
            key=USER_POOL_CLIENT_KEY,
            type_name="AWS::Cognito::UserPoolClient",
            identifier=client_name,
            properties={
                "ClientName": client_name,
                "UserPoolId": ref(USER_POOL_KEY, "UserPoolId"),
                "GenerateSecret": False,
                "ExplicitAuthFlows": [
                    "ALLOW_USER_PASSWORD_AUTH",
                    "ALLOW_REFRESH_TOKEN_AUTH",
                ],
            },
        ),
    ]


def _function(
    descriptor: EnvironmentDescriptor,
    unit: str,
    artifact: BuildArtifact,
    role_arn: str,
) -> ResourceSpec:
    name = resource_name(descriptor, ResourceKind.FUNCTION, unit)
    variables: dict[str, Any] = {
        "STAGE": descriptor.name,
        "DOCUMENTS_BUCKET": resource_name(descriptor, ResourceKind.DOCUMENTS_BUCKET),
    }
    if unit in CREDENTIAL_UNITS:
        variables[CREDENTIAL_ENV_KEY] = ref(CREDENTIALS_KEY, "Id")
    if unit == "auth_handler":
        variables["USER_POOL_ID"] = ref(USER_POOL_KEY, "UserPoolId")
        variables["USER_POOL_CLIENT_ID"] = ref(USER_POOL_CLIENT_KEY, "ClientId")

    return ResourceSpec(
        key=unit_key(unit),
        type_name="AWS::Lambda::Function",
        identifier=name,
        properties={
            "FunctionName": name,
            "Runtime": descriptor.setting("lambda_runtime", "python3.11"),
            "Handler": "lambda_function.lambda_handler",
            "Role": role_arn,
            "Timeout": int(descriptor.setting("lambda_timeout", 300 if unit == "db_init" else 60)),
            "MemorySize": int(descriptor.setting("lambda_memory_mb", 512)),
            "Code": {
                "S3Bucket": resource_name(descriptor, ResourceKind.CODE_BUCKET),
                "S3Key": artifact.object_key,
            },
            "Environment": {"Variables": variables},
        },
        adoptable=True,
        ignore_changes=["Code"] if unit in UNMANAGED_UNITS else [],
    )


def _http_api(descriptor: EnvironmentDescriptor) -> ResourceSpec:
    name = resource_name(descriptor, ResourceKind.HTTP_API)
    return ResourceSpec(
        key=HTTP_API_KEY,
        type_name="AWS::ApiGatewayV2::Api",
        identifier=name,
        properties={
            "Name": name,
            "ProtocolType": "HTTP",
            "Target": ref(unit_key(ENTRY_POINT_UNIT), "Arn"),
            "CorsConfiguration": {
                "AllowOrigins": ["*"],
                "AllowMethods": ["GET", "POST", "OPTIONS"],
                "AllowHeaders": ["authorization", "content-type"],
            },
        },
    )


def build_desired_stack(
    descriptor: EnvironmentDescriptor,
    binding: DatabaseBinding,
    builds: Mapping[str, BuildArtifact],
) -> DesiredStack:
    """Assemble every resource and output the environment should have."""
    role_arn = descriptor.setting("lambda_role_arn")
    if not role_arn:
        raise ConfigurationError(
            f"lambda_role_arn is not configured for environment {descriptor.name}"
        )
    missing = [unit for unit in ALL_UNITS if unit not in builds]
    if missing:
        raise ConfigurationError(f"no build artifact for units: {', '.join(missing)}")

    resources: list[ResourceSpec] = [
        _documents_bucket(descriptor),
        _bastion_group(descriptor),
    ]
    if binding.mode == ResourceMode.CREATED:
        resources.append(_database(descriptor, binding))
    resources.append(_credentials_secret(descriptor, binding))
    resources.extend(_identity(descriptor))
    resources.extend(
        _function(descriptor, unit, builds[unit], role_arn) for unit in ALL_UNITS
    )
    resources.append(_http_api(descriptor))

    outputs = [
        OutputSpec(name=ENTRY_POINT_OUTPUT, resource_key=HTTP_API_KEY, attribute="ApiEndpoint"),
        OutputSpec(
            name=IDENTITY_CLIENT_OUTPUT, resource_key=USER_POOL_CLIENT_KEY, attribute="ClientId"
        ),
        OutputSpec(name=CREDENTIAL_SECRET_OUTPUT, resource_key=CREDENTIALS_KEY, attribute="Id"),
    ]
    logger.debug(
        "Desired stack for %s: %d resources (database mode %s)",
        descriptor.name,
        len(resources),
        binding.mode.value,
    )
    return DesiredStack(resources=resources, outputs=outputs)

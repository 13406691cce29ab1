"""Built-in fault catalog.

Eight scenarios against a small test repository wired to GitHub Actions, an
ECS service and a Lambda function. Each one breaks exactly one thing and
asks the agent the question an engineer would ask.

Contracts keep the core identification of the fault required (the bad
version, the failing step, the error code) and make remediation advice
advisory, since good answers phrase fixes in many ways.
"""

from __future__ import annotations

from pipeline_chaos.scenario.contract import (
    ExpectedResponseContract,
    advisory,
    contains,
    icontains,
    one_of,
    regex,
)
from pipeline_chaos.scenario.model import (
    ArtifactMutation,
    ArtifactSpec,
    ManualPrecondition,
    Scenario,
    Trigger,
    function_invoked,
    pipeline_run,
    stopped_tasks,
)

PIPELINE_LOG = ArtifactSpec("pipeline-log", "pipeline-log")
PIPELINE_RUN = ArtifactSpec("pipeline-run", "pipeline-run")
PIPELINE_JOBS = ArtifactSpec("pipeline-jobs", "pipeline-jobs")

SECRETS_URL = "https://github.com/<org>/<repo>/settings/secrets/actions"

# ---------------------------------------------------------------------------
# 1.x  Pipeline configuration and dependency faults
# ---------------------------------------------------------------------------

BUILD_YML_BAD_INDENT = """\
name: Build Test
on: [push]
jobs:
  build:
    runs-on: ubuntu-latest
    steps:
    - uses: actions/checkout@v3
      - name: Build
        run: echo "Building application"
      - name: Test
        run: echo "Running tests"
"""

PACKAGE_JSON_BAD_VERSION = """\
{
  "name": "test-app",
  "version": "1.0.0",
  "description": "Test application for DevOps agent",
  "dependencies": {
    "express": "99.99.99",
    "lodash": "^4.17.21"
  },
  "devDependencies": {
    "jest": "^29.0.0"
  }
}
"""

NPM_BUILD_YML = """\
name: NPM Build
on: [push]
jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v3
      - name: Setup Node
        uses: actions/setup-node@v3
        with:
          node-version: '18'
      - name: Install dependencies
        run: npm install
      - name: Run tests
        run: npm test
"""

REQUIREMENTS_BAD_VERSION = """\
requests==99.99.99
boto3==1.26.137
flask==2.3.0
"""

PYTHON_BUILD_YML = """\
name: Python Build
on: [push]
jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v3
      - name: Setup Python
        uses: actions/setup-python@v4
        with:
          python-version: '3.11'
      - name: Install dependencies
        run: pip install -r requirements.txt
      - name: Run tests
        run: python -m pytest tests/
"""

# ---------------------------------------------------------------------------
# 2.x  Deployment faults that surface in the cloud, not the pipeline
# ---------------------------------------------------------------------------

TASK_DEFINITION_BAD_DB = """\
{
  "family": "test-api-task",
  "networkMode": "awsvpc",
  "requiresCompatibilities": ["FARGATE"],
  "cpu": "256",
  "memory": "512",
  "containerDefinitions": [
    {
      "name": "api-container",
      "image": "nginx:latest",
      "portMappings": [
        {
          "containerPort": 80,
          "protocol": "tcp"
        }
      ],
      "environment": [
        {
          "name": "DATABASE_URL",
          "value": "postgres://wrong-host.internal:5432/mydb"
        },
        {
          "name": "REDIS_URL",
          "value": "redis://localhost:6379"
        }
      ],
      "logConfiguration": {
        "logDriver": "awslogs",
        "options": {
          "awslogs-group": "/ecs/test-api",
          "awslogs-region": "us-east-1",
          "awslogs-stream-prefix": "ecs"
        }
      }
    }
  ]
}
"""

DEPLOY_ECS_YML = """\
name: Deploy to ECS
on:
  push:
    branches: [main]

jobs:
  deploy:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v3

      - name: Configure AWS credentials
        uses: aws-actions/configure-aws-credentials@v2
        with:
          aws-access-key-id: ${{ secrets.AWS_ACCESS_KEY_ID }}
          aws-secret-access-key: ${{ secrets.AWS_SECRET_ACCESS_KEY }}
          aws-region: us-east-1

      - name: Register task definition
        id: task-def
        run: |
          TASK_DEF_ARN=$(aws ecs register-task-definition \\
            --cli-input-json file://task-definition.json \\
            --query 'taskDefinition.taskDefinitionArn' \\
            --output text)
          echo "task-def-arn=$TASK_DEF_ARN" >> $GITHUB_OUTPUT

      - name: Update ECS service
        run: |
          aws ecs update-service \\
            --cluster test-cluster \\
            --service test-api-service \\
            --task-definition ${{ steps.task-def.outputs.task-def-arn }} \\
            --force-new-deployment

      - name: Wait for deployment
        run: |
          aws ecs wait services-stable \\
            --cluster test-cluster \\
            --services test-api-service
"""

LAMBDA_MEMORY_HOG = """\
import json

def lambda_handler(event, context):
    large_list = []
    for i in range(10000000):
        large_list.append({'data': 'x' * 1000, 'index': i})

    return {
        'statusCode': 200,
        'body': json.dumps('Success')
    }
"""

DEPLOY_LAMBDA_YML = """\
name: Deploy Lambda
on: [push]

jobs:
  deploy:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v3

      - name: Configure AWS credentials
        uses: aws-actions/configure-aws-credentials@v2
        with:
          aws-access-key-id: ${{ secrets.AWS_ACCESS_KEY_ID }}
          aws-secret-access-key: ${{ secrets.AWS_SECRET_ACCESS_KEY }}
          aws-region: us-east-1

      - name: Package Lambda
        run: |
          zip function.zip lambda_function.py

      - name: Deploy Lambda
        run: |
          aws lambda update-function-code \\
            --function-name test-api-handler \\
            --zip-file fileb://function.zip || \\
          aws lambda create-function \\
            --function-name test-api-handler \\
            --runtime python3.11 \\
            --role arn:aws:iam::123456789012:role/lambda-role \\
            --handler lambda_function.lambda_handler \\
            --zip-file fileb://function.zip \\
            --memory-size 128 \\
            --timeout 30

      - name: Test Lambda
        run: |
          aws lambda invoke \\
            --function-name test-api-handler \\
            --payload '{}' \\
            response.json
          cat response.json
"""

# ---------------------------------------------------------------------------
# 3.x  Credential faults (secrets are changed by hand before the trigger)
# ---------------------------------------------------------------------------

AWS_ACCESS_YML = """\
name: AWS Access Test
on: [push]

jobs:
  test:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v3

      - name: Configure AWS credentials
        env:
          AWS_ACCESS_KEY_ID: ${{ secrets.AWS_ACCESS_KEY_ID }}
          AWS_SECRET_ACCESS_KEY: ${{ secrets.AWS_SECRET_ACCESS_KEY }}
          AWS_DEFAULT_REGION: us-east-1
        run: |
          aws sts get-caller-identity

      - name: List S3 buckets
        run: |
          aws s3 ls
"""

# ---------------------------------------------------------------------------
# 4.x  Container build faults
# ---------------------------------------------------------------------------

DOCKERFILE_BAD_CMD = """\
FROM node:18-alpine

WORKDIR /app

COPY package*.json ./
RUN npm install

COPY . .

EXPOSE 3000

CMD ["npm" "start"]
"""

DOCKER_BUILD_YML = """\
name: Docker Build
on: [push]

jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v3

      - name: Set up Docker Buildx
        uses: docker/setup-buildx-action@v2

      - name: Build Docker image
        run: |
          docker build -t test-app:latest .

      - name: Test container
        run: |
          docker run --rm test-app:latest
"""


def yaml_syntax_error() -> Scenario:
    return Scenario(
        id="1.1",
        title="GitHub Actions YAML syntax error",
        query="Why is my build workflow failing?",
        mutations=[
            ArtifactMutation(
                ".github/workflows/build.yml",
                BUILD_YML_BAD_INDENT,
                intent="step 'Build' nested under 'uses' (wrong indentation)",
            )
        ],
        convergence=[pipeline_run("build.yml", timeout_s=300)],
        # Invalid workflow files are rejected before any job runs, so the run
        # descriptor is the evidence and the log is usually absent.
        artifacts=[PIPELINE_RUN, PIPELINE_LOG],
        contract=ExpectedResponseContract(
            rules=(
                one_of(
                    "YAML syntax error",
                    "syntax error",
                    "parsing failure",
                    "parse error",
                    "invalid workflow",
                    name="identifies-yaml-error",
                    requires=("pipeline-run",),
                ),
                icontains("build.yml", name="names-workflow-file", requires=("pipeline-run",)),
                one_of("indentation", "indented", "line 8", name="points-to-indentation"),
                advisory(contains(".github/workflows/build.yml", name="full-workflow-path")),
                advisory(regex(r"\bname\b.{0,60}\b(align|level|indent)", name="explains-name-alignment")),
            )
        ),
        tags=("github-actions", "config"),
    )


def npm_dependency_failure() -> Scenario:
    return Scenario(
        id="1.2",
        title="npm dependency failure",
        query="npm install is failing in my GitHub Actions workflow",
        mutations=[
            ArtifactMutation("package.json", PACKAGE_JSON_BAD_VERSION, intent="express pinned to 99.99.99"),
            ArtifactMutation(".github/workflows/npm-build.yml", NPM_BUILD_YML),
        ],
        convergence=[pipeline_run("npm-build.yml")],
        artifacts=[PIPELINE_LOG, PIPELINE_JOBS],
        contract=ExpectedResponseContract(
            rules=(
                contains("99.99.99", name="identifies-bad-version"),
                contains("Install dependencies", name="names-failing-step", requires=("pipeline-log",)),
                advisory(
                    one_of(
                        "does not exist",
                        "doesn't exist",
                        "no matching version",
                        "ETARGET",
                        "not found",
                        name="states-version-missing",
                    )
                ),
                advisory(regex(r"express@\^?4\.\d+", name="suggests-valid-version")),
                advisory(one_of("npm view express versions", "npm show express", "npm info express", name="version-lookup-command")),
            )
        ),
        tags=("github-actions", "dependencies", "npm"),
    )


def python_dependency_failure() -> Scenario:
    return Scenario(
        id="1.3",
        title="Python dependency failure",
        query="pip install is failing, what's wrong with my dependencies?",
        mutations=[
            ArtifactMutation("requirements.txt", REQUIREMENTS_BAD_VERSION, intent="requests pinned to 99.99.99"),
            ArtifactMutation(".github/workflows/python-build.yml", PYTHON_BUILD_YML),
        ],
        convergence=[pipeline_run("python-build.yml")],
        artifacts=[PIPELINE_LOG, PIPELINE_JOBS],
        contract=ExpectedResponseContract(
            rules=(
                contains("requests==99.99.99", name="identifies-bad-pin"),
                one_of(
                    "does not exist",
                    "doesn't exist",
                    "no matching distribution",
                    "could not find a version",
                    name="states-version-missing",
                    requires=("pipeline-log",),
                ),
                advisory(regex(r"requests==2\.\d+", name="suggests-valid-version")),
                advisory(regex(r"requests>=2\.\d+", name="suggests-flexible-range")),
                advisory(icontains("pip", name="references-pip-output")),
            )
        ),
        tags=("github-actions", "dependencies", "python"),
    )


def ecs_deployment_failure() -> Scenario:
    return Scenario(
        id="2.2",
        title="ECS deployment failure",
        query=(
            "My ECS deployment from GitHub Actions is failing. "
            "The workflow succeeded but the tasks won't start."
        ),
        mutations=[
            ArtifactMutation(
                "task-definition.json",
                TASK_DEFINITION_BAD_DB,
                intent="DATABASE_URL points at a host that does not resolve",
            ),
            ArtifactMutation(".github/workflows/deploy-ecs.yml", DEPLOY_ECS_YML),
        ],
        convergence=[
            pipeline_run("deploy-ecs.yml", timeout_s=900),
            stopped_tasks(),
        ],
        artifacts=[
            PIPELINE_LOG,
            ArtifactSpec("service-status", "service-status"),
            ArtifactSpec("stopped-task", "stopped-task"),
            ArtifactSpec("runtime-log", "runtime-log"),
        ],
        contract=ExpectedResponseContract(
            rules=(
                contains("DATABASE_URL", name="points-to-database-url"),
                one_of(
                    "database connection",
                    "connect to the database",
                    "wrong-host.internal",
                    "connection refused",
                    "connection timeout",
                    name="identifies-db-connection-failure",
                    requires=("runtime-log",),
                ),
                one_of(
                    "stopped",
                    "exit code",
                    "exited",
                    "stop reason",
                    "essential container",
                    name="explains-task-stop",
                    requires=("stopped-task",),
                ),
                advisory(
                    regex(
                        r"\b(?=[0-9a-f]*\d)(?=[0-9a-f]*[a-f])[0-9a-f]{7,40}\b",
                        name="cites-commit-sha",
                        ignore_case=False,
                    )
                ),
                advisory(one_of("rollback", "roll back", "previous task definition", name="offers-rollback")),
                advisory(one_of("verify", "security group", "endpoint", name="suggests-db-checks")),
                advisory(one_of("timeline", "after the deployment", "deployed at", name="relates-timing")),
            )
        ),
        tags=("ecs", "deployment", "cross-system"),
        meta={"expected_failure": "Database connection timeout"},
    )


def lambda_memory_failure() -> Scenario:
    return Scenario(
        id="2.3",
        title="Lambda memory exhaustion",
        query="Lambda function deployed from GitHub but it's timing out when invoked",
        mutations=[
            ArtifactMutation("lambda_function.py", LAMBDA_MEMORY_HOG, intent="allocates far beyond 128 MB"),
            ArtifactMutation(".github/workflows/deploy-lambda.yml", DEPLOY_LAMBDA_YML),
        ],
        convergence=[
            pipeline_run("deploy-lambda.yml"),
            function_invoked(),
        ],
        artifacts=[
            PIPELINE_LOG,
            ArtifactSpec("function-log", "function-log"),
            ArtifactSpec("function-config", "function-config"),
        ],
        contract=ExpectedResponseContract(
            rules=(
                one_of(
                    "memory exhaustion",
                    "out of memory",
                    "memory limit",
                    "Max Memory Used",
                    "runs out of memory",
                    name="identifies-memory-exhaustion",
                    requires=("function-log",),
                ),
                regex(r"\b128\s?MB\b", name="cites-memory-size"),
                advisory(one_of("increase memory", "increase the memory", "--memory-size", name="suggests-more-memory")),
                advisory(contains("update-function-configuration", name="gives-cli-command")),
                advisory(one_of("not a timeout", "rather than a timeout", "instead of a timeout", name="separates-memory-from-timeout")),
            )
        ),
        tags=("lambda", "deployment", "cross-system"),
    )


def missing_github_secret() -> Scenario:
    return Scenario(
        id="3.1",
        title="Missing GitHub secret",
        query="AWS commands are failing in my GitHub Actions workflow",
        preconditions=[
            ManualPrecondition(
                f"1. Go to: {SECRETS_URL}\n2. DELETE the secret: AWS_ACCESS_KEY_ID",
                name="delete-aws-access-key-secret",
            )
        ],
        mutations=[ArtifactMutation(".github/workflows/aws-access.yml", AWS_ACCESS_YML)],
        convergence=[pipeline_run("aws-access.yml")],
        artifacts=[PIPELINE_LOG],
        contract=ExpectedResponseContract(
            rules=(
                contains("AWS_ACCESS_KEY_ID", name="names-missing-variable"),
                one_of(
                    "secret",
                    "secrets",
                    name="identifies-missing-secret",
                ),
                one_of(
                    "authentication",
                    "credentials",
                    "Unable to locate credentials",
                    name="identifies-auth-failure",
                    requires=("pipeline-log",),
                ),
                advisory(one_of("Settings > Secrets", "repository settings", "settings/secrets", name="explains-adding-secret")),
                advisory(one_of("never commit", "do not commit", "don't commit", name="warns-against-committing-keys")),
            )
        ),
        reminder="Restore the AWS_ACCESS_KEY_ID secret after testing.",
        tags=("github-actions", "credentials", "manual"),
    )


def invalid_aws_credentials() -> Scenario:
    return Scenario(
        id="3.2",
        title="Invalid AWS credentials",
        query="Getting InvalidClientTokenId error in GitHub Actions",
        preconditions=[
            ManualPrecondition(
                f"1. Go to: {SECRETS_URL}\n"
                "2. UPDATE AWS_ACCESS_KEY_ID with invalid value: AKIAINVALIDKEY123456",
                name="set-invalid-aws-access-key",
            )
        ],
        # Re-runs the workflow written by 3.1.
        trigger=Trigger(allow_empty=True),
        convergence=[pipeline_run("aws-access.yml")],
        artifacts=[PIPELINE_LOG],
        contract=ExpectedResponseContract(
            rules=(
                contains("InvalidClientTokenId", name="names-error-code"),
                one_of("invalid", "expired", "rotated", "deactivated", name="states-credentials-invalid"),
                advisory(one_of("rotated", "deleted user", "expired", "deactivated", name="lists-common-causes")),
                advisory(one_of("IAM", "access key", name="explains-new-key")),
                advisory(one_of("GitHub Secrets", "repository secret", "update the secret", name="explains-updating-secret")),
                advisory(contains("aws sts get-caller-identity", name="suggests-local-check")),
            )
        ),
        reminder="Restore valid AWS credentials after testing.",
        tags=("github-actions", "credentials", "manual"),
    )


def docker_build_failure() -> Scenario:
    return Scenario(
        id="4.2",
        title="Docker build failure",
        query="Docker build is failing in GitHub Actions",
        mutations=[
            ArtifactMutation("Dockerfile", DOCKERFILE_BAD_CMD, intent="CMD exec form missing a comma"),
            ArtifactMutation(".github/workflows/docker-build.yml", DOCKER_BUILD_YML),
        ],
        convergence=[pipeline_run("docker-build.yml")],
        artifacts=[PIPELINE_LOG, PIPELINE_JOBS],
        contract=ExpectedResponseContract(
            rules=(
                contains("CMD", name="points-to-cmd"),
                one_of("comma", "JSON array", "exec form", name="explains-missing-comma"),
                icontains("Dockerfile", name="names-dockerfile"),
                advisory(regex(r'CMD\s*\[\s*"npm"\s*,\s*"start"\s*\]', name="gives-corrected-syntax")),
                advisory(icontains("best practice", name="mentions-best-practices")),
            )
        ),
        tags=("docker", "build"),
    )


def get_scenarios() -> list[Scenario]:
    """The built-in catalog, in execution order."""
    return [
        yaml_syntax_error(),
        npm_dependency_failure(),
        python_dependency_failure(),
        ecs_deployment_failure(),
        lambda_memory_failure(),
        missing_github_secret(),
        invalid_aws_credentials(),
        docker_build_failure(),
    ]

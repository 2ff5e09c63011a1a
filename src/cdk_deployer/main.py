"""
Command line entry point.

Commands:
    synth      Synthesize the application (or read cdk.out) and list its stacks
    bootstrap  Ensure the toolkit stack in every environment of the stacks
    deploy     Bootstrap, publish assets and deploy the stacks
    destroy    Delete the stacks in reverse dependency order

Example:
    cdk-deployer deploy --app "node bin/app.js" --stack Network --stack Service
"""

import argparse
import shlex
import sys
from pathlib import Path
from typing import Dict, List, Optional

from cdk_deployer import constants as CONSTANTS
from cdk_deployer.core.config_loader import load_deployer_config
from cdk_deployer.core.exceptions import CdkDeployerError, ConfigurationError
from cdk_deployer.deploy import orchestrator
import cdk_deployer.logger as logging_setup


def _parse_pairs(values: Optional[List[str]], option: str) -> Dict[str, str]:
    pairs = {}
    for value in values or []:
        if "=" not in value:
            raise ConfigurationError(f"Expected KEY=VALUE for {option}, got '{value}'")
        key, item = value.split("=", 1)
        pairs[key] = item
    return pairs


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cdk-deployer",
        description="Deploy, bootstrap and destroy CDK cloud assemblies on AWS CloudFormation."
    )
    parser.add_argument("command", choices=["synth", "bootstrap", "deploy", "destroy"])
    parser.add_argument("--project", default=".", help="Directory of the cloud application")
    parser.add_argument("--config-file", default=CONSTANTS.DEPLOYER_CONFIG_FILE_NAME,
                        help="Deployer configuration file inside the project directory")
    parser.add_argument("--app", help="Command that runs the cloud application; "
                                      "without it the existing cloud assembly is used")
    parser.add_argument("--stack", dest="stacks", action="append",
                        help="Stack to act on (repeatable); all stacks when omitted")
    parser.add_argument("--parameter", dest="parameters", action="append", metavar="KEY=VALUE",
                        help="Stack parameter (repeatable)")
    parser.add_argument("--tag", dest="tags", action="append", metavar="KEY=VALUE",
                        help="Stack tag (repeatable)")
    parser.add_argument("--profile", help="AWS profile")
    parser.add_argument("--toolkit-stack-name", help="Name of the toolkit stack")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging and stack traces")
    return parser


def _load_config(args: argparse.Namespace):
    project_path = Path(args.project).resolve()
    config = load_deployer_config(project_path, args.config_file)

    if args.stacks:
        config.stacks = list(args.stacks)
    config.parameters.update(_parse_pairs(args.parameters, "--parameter"))
    config.tags.update(_parse_pairs(args.tags, "--tag"))
    if args.profile:
        config.profile = args.profile
    if args.toolkit_stack_name:
        config.toolkit_stack_name = args.toolkit_stack_name
    if args.debug:
        config.mode = "DEBUG"
    return project_path, config


def run(args: argparse.Namespace) -> None:
    project_path, config = _load_config(args)
    logger = logging_setup.configure_logger_from_config(config)

    session = orchestrator.DeploymentSession.from_config(config)
    app_command = shlex.split(args.app) if args.app else None
    definition = orchestrator.synth(config, app_command, cwd=project_path, session=session)

    if args.command == "synth":
        for stack in definition.stacks:
            logger.info(f"{stack.stack_name} ({stack.environment})")
    elif args.command == "bootstrap":
        orchestrator.bootstrap(definition, config, session)
    elif args.command == "deploy":
        orchestrator.deploy(definition, config, session)
    elif args.command == "destroy":
        orchestrator.destroy(definition, config, session)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.debug:
        logging_setup.setup_logger(debug_mode=True)

    try:
        run(args)
    except CdkDeployerError as e:
        logging_setup.print_stack_trace()
        logging_setup.logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logging_setup.logger.error("Interrupted")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())

from rich.pretty import pprint

from argtree import *


@command(command_name="deploy")
def deploy(context):
    """Deploy the current project."""
    return {"deployed": context.args["target"]}


deploy.add_flag("target", "-t", "--target", enum=["staging", "production"], default="staging",
                description="environment to deploy to")
deploy.add_flag("debug", "-d", "--debug", flag_only=True, description="enable debug output")

service = deploy.command("service", "Manage the deployed service")
start = service.command("start", "Start the service")
start.add_flag("port", "-p", "--port", type="number", default=3000, env="APP_PORT",
               description="listening port")


@start.handle
def run(context):
    return {"listening": context.args["port"], "chain": context.command_chain}


if __name__ == '__main__':
    pprint(deploy)
    pprint(invoke(deploy))

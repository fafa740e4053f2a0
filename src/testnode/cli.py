#!/usr/bin/env python3
"""
Test node CLI - provision, inspect and tear down ephemeral test VMs.

    testnode up web ubuntu-test --run-list 'recipe[web]'
    testnode status web 123
    testnode ip web 123
    testnode down web 123
"""

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from testnode.exceptions import TestNodeError
from testnode.node import TestNode

app = typer.Typer(
    name="testnode",
    help="Ephemeral test VM management",
    add_completion=False,
)
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _attach(name: str, vm_id: int) -> TestNode:
    try:
        return TestNode.attach(name, vm_id)
    except (TestNodeError, ValueError) as e:
        console.print(f"❌ Could not find VM {vm_id}: {e}")
        raise typer.Exit(1)


def _summary(node: TestNode, ip: Optional[str]) -> Table:
    record = node.refresh_info()
    table = Table(title=f"Test node {node.name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("VM ID", str(record.vmid))
    table.add_row("VM Name", record.name)
    table.add_row("Chef Node", f"{node.name}_{record.vmid}")
    table.add_row("State", record.state_name())
    table.add_row("IP", ip or "unknown")
    return table


@app.command()
def up(
    name: str = typer.Argument(..., help="Node name"),
    template: str = typer.Argument(..., help="Template to instantiate"),
    run_list: Optional[str] = typer.Option(None, "--run-list", "-r", help="Chef run list"),
    data: Optional[str] = typer.Option(None, "--data", "-j", help="JSON attributes for chef"),
    knife_config: Optional[str] = typer.Option(None, "--knife-config", help="Path to knife config file"),
    ssh_password: Optional[str] = typer.Option(None, "--ssh-password", help="SSH password on the VM"),
    no_bootstrap: bool = typer.Option(False, "--no-bootstrap", help="Skip chef bootstrap"),
    keep_on_failure: bool = typer.Option(False, "--keep-on-failure", help="Keep the VM if anything fails"),
) -> None:
    """Create a test VM, wait for it and bootstrap chef-client."""
    console.print(f"🚀 Creating test node {name!r} from template {template!r}...")
    try:
        node = TestNode(name, template, keep_vm_alive=True)
    except (TestNodeError, ValueError) as e:
        console.print(f"❌ Failed to create VM: {e}")
        raise typer.Exit(1)

    ok = False
    try:
        ready = False
        if not node.is_healthy():
            console.print("❌ VM did not reach running state")
        elif no_bootstrap:
            ready = True
        else:
            console.print("🔧 Bootstrapping chef-client...")
            ready = node.bootstrap(run_list=run_list, data=data, ssh_password=ssh_password, config=knife_config)
            if not ready:
                console.print("❌ Bootstrap failed")
        if ready:
            console.print(_summary(node, node.ip()))
            ok = True
    except (TestNodeError, OSError) as e:
        console.print(f"❌ {e}")
    finally:
        if not ok and not keep_on_failure:
            console.print("🗑️  Removing failed VM")
            try:
                node.delete()
            except TestNodeError as e:
                console.print(f"❌ Failed to delete VM: {e}")

    if not ok:
        raise typer.Exit(1)
    console.print(f"✅ Test node {node.external_name()} is ready")


@app.command()
def status(
    name: str = typer.Argument(..., help="Node name"),
    vm_id: int = typer.Argument(..., help="VM id"),
) -> None:
    """Show the state of an existing test VM."""
    node = _attach(name, vm_id)
    console.print(_summary(node, None))


@app.command()
def ip(
    name: str = typer.Argument(..., help="Node name"),
    vm_id: int = typer.Argument(..., help="VM id"),
) -> None:
    """Discover and print the IP address of a test VM."""
    node = _attach(name, vm_id)
    address = node.ip()
    if not address:
        console.print(f"❌ Could not discover IP of VM {vm_id}")
        raise typer.Exit(1)
    console.print(address)


@app.command()
def down(
    name: str = typer.Argument(..., help="Node name"),
    vm_id: int = typer.Argument(..., help="VM id"),
) -> None:
    """Delete a test VM and its chef node."""
    node = _attach(name, vm_id)
    try:
        node.delete()
    except TestNodeError as e:
        console.print(f"❌ Failed to delete VM {vm_id}: {e}")
        raise typer.Exit(1)
    console.print(f"✅ Deleted VM {vm_id}")


if __name__ == "__main__":
    app()

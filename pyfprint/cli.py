"""
fprint-tool
===========

Command line front end for pyfprint: list sensors, enroll fingers into a
SQLite print database, and verify or identify against it.

Usage:
    fprint-tool devices
    fprint-tool enroll --username "Bruce Banner" --finger right-index
    fprint-tool verify --username "Bruce Banner"
    fprint-tool identify
    fprint-tool --json list

Every option can also be given through the environment (PYFPRINT_LIB_PATH,
PYFPRINT_DB_PATH, PYFPRINT_DEVICE).
"""

import json
import logging
import re
from contextlib import contextmanager
from typing import Any, Dict

import click

from pyfprint import errors
from pyfprint.context import Context
from pyfprint.finger import DeviceFeature, Finger
from pyfprint.prints import Print
from pyfprint.storage import DB_PATH, PrintStore


LOG_PATH = "fprint_tool.log"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FINGER_CHOICES = [finger.name.lower().replace('_', '-') for finger in Finger]

logger = logging.getLogger(__name__)


def setup_logging(debug: bool, log_path: str = LOG_PATH, console: bool = True):
    """
    Log to a file and to stderr; DEBUG level when requested.

    JSON output logs to the file only, so the only thing on the console is
    the result object.
    """
    handlers = []
    if log_path:
        handlers.append(logging.FileHandler(log_path))
    if console:
        handlers.append(logging.StreamHandler())
    if not handlers:
        handlers.append(logging.NullHandler())
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )
    if debug:
        logger.debug("Debug logging enabled")


def _error_type(exc: Exception) -> str:
    name = type(exc).__name__
    if name.endswith("Error"):
        name = name[:-len("Error")]
    words = re.sub(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])", "_", name)
    return words.lower() + "_error"


class FingerprintTool:
    """
    State shared by the commands: the libfprint context, the selected device
    and the print database.
    """

    def __init__(self, lib_path: str = None, db_path: str = DB_PATH,
                 device_index: int = 0, as_json: bool = False):
        self.lib_path = lib_path
        self.db_path = db_path
        self.device_index = device_index
        self.as_json = as_json
        self._context = None
        self._store = None

    @property
    def context(self) -> Context:
        if self._context is None:
            self._context = Context(lib_path=self.lib_path)
        return self._context

    @property
    def store(self) -> PrintStore:
        if self._store is None:
            self._store = PrintStore(self.db_path)
        return self._store

    @contextmanager
    def device(self):
        """Open the selected device for the duration of the block."""
        devices = self.context.get_devices()
        if not devices:
            raise errors.FprintError("No fingerprint devices found.")
        if self.device_index >= len(devices):
            raise errors.FprintError(
                f"No device at index {self.device_index} ({len(devices)} device(s) found)"
            )

        device = devices[self.device_index]
        logger.info(f"Using device {device.name} ({device.driver})")
        with device:
            yield device

    def cleanup(self):
        """Release the context and everything it opened."""
        if self._context is not None:
            try:
                self._context.close()
            except errors.FprintError as e:
                logger.error(f"Error releasing context: {e}")
            self._context = None

    def report(self, message: str, **data):
        """Print a success result, as JSON when requested."""
        if self.as_json:
            click.echo(json.dumps({"status": "success", "code": 0, "message": message, **data},
                                  default=str))
        else:
            click.echo(message)

    def fail(self, ctx: click.Context, exc: Exception):
        """Print an error and exit with status 1."""
        logger.error(f"{ctx.info_name} failed: {exc}")
        if self.as_json:
            response: Dict[str, Any] = {
                "status": "error",
                "code": getattr(exc, 'code', None),
                "message": str(exc),
                "error_type": _error_type(exc),
            }
            click.echo(json.dumps(response))
        else:
            click.echo(f"Error: {exc}", err=True)
        ctx.exit(1)

    def progress(self, message: str):
        if not self.as_json:
            click.echo(message)


@click.group()
@click.option('--lib-path', envvar='PYFPRINT_LIB_PATH', default=None,
              help="Path to the libfprint shared library")
@click.option('--db-path', envvar='PYFPRINT_DB_PATH', default=DB_PATH, show_default=True,
              help="Path to the SQLite print database")
@click.option('--device', 'device_index', envvar='PYFPRINT_DEVICE', type=int, default=0,
              show_default=True, help="Index of the device to use")
@click.option('--log-file', default=LOG_PATH, show_default=True,
              help="Log file (empty to disable)")
@click.option('--debug/--no-debug', default=False, help="Enable debug logging")
@click.option('--json/--no-json', 'as_json', default=False, help="Output results as JSON")
@click.pass_context
def cli(ctx, lib_path, db_path, device_index, log_file, debug, as_json):
    """
    Fingerprint enrollment and matching with libfprint
    """
    setup_logging(debug, log_file, console=not as_json)
    ctx.obj = FingerprintTool(lib_path=lib_path, db_path=db_path,
                              device_index=device_index, as_json=as_json)
    ctx.call_on_close(ctx.obj.cleanup)


@cli.command()
@click.pass_context
def devices(ctx):
    """List the available fingerprint devices"""
    tool = ctx.obj
    try:
        found = []
        for index, device in enumerate(tool.context.get_devices()):
            features = device.features
            found.append({
                "index": index,
                "driver": device.driver,
                "device_id": device.device_id,
                "name": device.name,
                "scan_type": device.scan_type.name.lower(),
                "enroll_stages": device.nr_enroll_stages,
                "features": [f.name.lower() for f in DeviceFeature if f and f in features],
            })
    except errors.FprintError as e:
        tool.fail(ctx, e)
        return

    if tool.as_json:
        tool.report(f"Found {len(found)} device(s)", devices=found)
    elif not found:
        click.echo("No fingerprint devices found")
    else:
        for info in found:
            click.echo(f"[{info['index']}] {info['name']} (driver: {info['driver']}, "
                       f"id: {info['device_id']}, {info['scan_type']}, "
                       f"{info['enroll_stages']} enroll stages)")


@cli.command()
@click.option('--username', required=True, help="User name to associate with the fingerprint")
@click.option('--finger', type=click.Choice(FINGER_CHOICES, case_sensitive=False),
              default='right-index', show_default=True, help="Finger to enroll")
@click.option('--description', default=None, help="Free-form description stored in the print")
@click.option('--yes', is_flag=True, default=False, help="Overwrite an existing print without asking")
@click.pass_context
def enroll(ctx, username, finger, description, yes):
    """Enroll a finger and store the print"""
    tool = ctx.obj
    finger = Finger.parse(finger)
    try:
        existing = [e for e in tool.store.list_entries()
                    if e['username'] == username and e['finger'] == finger]
        if existing and not yes and not tool.as_json:
            if not click.confirm(f"User '{username}' already has a {finger.name} print. Overwrite?"):
                return

        with tool.device() as device:
            template = Print.new(device)
            template.set_metadata(username=username, finger=finger, description=description)

            stages = device.nr_enroll_stages
            tool.progress(f"Enrolling {finger.name} for {username}: place your finger on the "
                          f"scanner ({stages} stages)")

            def on_progress(dev, completed_stages, partial, error):
                if error is not None:
                    tool.progress(f"Scan failed, retry: {error.message}")
                else:
                    tool.progress(f"Stage {completed_stages}/{stages} done")

            enrolled = device.enroll(template, callback=on_progress)

        row_id = tool.store.save(enrolled)
    except errors.FprintError as e:
        tool.fail(ctx, e)
        return

    tool.report(f"User '{username}' enrolled successfully!", id=row_id,
                username=username, finger=finger.name.lower())


@cli.command()
@click.option('--username', required=True, help="User name to verify against")
@click.option('--finger', type=click.Choice(FINGER_CHOICES, case_sensitive=False),
              default=None, help="Finger to verify (first stored finger by default)")
@click.pass_context
def verify(ctx, username, finger):
    """Verify a fingerprint against a specific user"""
    tool = ctx.obj
    finger = Finger.parse(finger) if finger else None
    try:
        enrolled = tool.store.load(tool.context, username, finger)
        if enrolled is None:
            raise errors.DataNotFoundError(f"User '{username}' not found in the database")

        with tool.device() as device:
            tool.progress(f"Verifying {username}: place your finger on the scanner")
            result = device.verify(enrolled)
    except errors.FprintError as e:
        tool.fail(ctx, e)
        return

    if result.matched:
        tool.report(f"Verification successful! Fingerprint matches user '{username}'",
                    matched=True, username=username)
    else:
        tool.report(f"Verification failed! Fingerprint does not match user '{username}'",
                    matched=False, username=username)


@cli.command()
@click.pass_context
def identify(ctx):
    """Identify a fingerprint against all stored prints"""
    tool = ctx.obj
    try:
        with tool.device() as device:
            gallery = [p for p in tool.store.load_all(tool.context, driver=device.driver)
                       if p.compatible(device)]
            if not gallery:
                raise errors.DataNotFoundError("No prints for this device in the database")

            tool.progress(f"Identifying against {len(gallery)} print(s): "
                          f"place your finger on the scanner")
            result = device.identify(gallery)
    except errors.FprintError as e:
        tool.fail(ctx, e)
        return

    if result.match is not None:
        tool.report(f"Identification successful! Matched user: {result.match.username}",
                    matched=True, username=result.match.username,
                    finger=result.match.finger.name.lower())
    else:
        tool.report("Identification failed! No matching fingerprint found", matched=False)


@cli.command('list')
@click.pass_context
def list_prints(ctx):
    """List stored prints"""
    tool = ctx.obj
    try:
        entries = tool.store.list_entries()
    except errors.FprintError as e:
        tool.fail(ctx, e)
        return

    if tool.as_json:
        for entry in entries:
            entry['finger'] = entry['finger'].name.lower()
        tool.report(f"{len(entries)} stored print(s)", prints=entries)
    elif not entries:
        click.echo("No prints stored")
    else:
        click.echo("\nStored prints:")
        for entry in entries:
            click.echo(f"- {entry['username']} {entry['finger'].name.lower()} "
                       f"(ID: {entry['id']}, driver: {entry['driver']}, Added: {entry['date_added']})")


@cli.command()
@click.option('--username', required=True, help="User whose prints to delete")
@click.option('--finger', type=click.Choice(FINGER_CHOICES, case_sensitive=False),
              default=None, help="Only delete this finger")
@click.pass_context
def delete(ctx, username, finger):
    """Delete stored prints of a user"""
    tool = ctx.obj
    finger = Finger.parse(finger) if finger else None
    try:
        count = tool.store.delete(username, finger)
        if count == 0:
            raise errors.DataNotFoundError(f"User '{username}' not found")
    except errors.FprintError as e:
        tool.fail(ctx, e)
        return

    tool.report(f"Deleted {count} print(s) of user '{username}'", deleted=count)


@cli.command()
@click.option('--output', type=click.Path(dir_okay=False, writable=True), required=True,
              help="Where to write the image (PGM)")
@click.pass_context
def capture(ctx, output):
    """Capture a raw fingerprint image"""
    tool = ctx.obj
    try:
        with tool.device() as device:
            tool.progress("Place your finger on the scanner")
            image = device.capture()
    except errors.FprintError as e:
        tool.fail(ctx, e)
        return

    try:
        with open(output, 'wb') as f:
            f.write(image.to_pgm())
    except OSError as e:
        tool.fail(ctx, e)
        return
    finally:
        image.release()
    tool.report(f"Image {image.width}x{image.height} written to {output}",
                width=image.width, height=image.height, path=output)


if __name__ == "__main__":
    cli()

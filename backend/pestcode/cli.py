# Overview: Flask CLI command groups for bootstrap, code masters and QR code operations.

# backend/pestcode/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app pestcode <group> <command> [options]
#
# System bootstrap/repair:
# - flask --app pestcode system init-db
#   Create all tables that do not exist yet.
# - flask --app pestcode system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - flask --app pestcode system seed-demo
#   Create a demo medicine, stock batch and active master (idempotent).
#
# Code masters:
# - flask --app pestcode masters list [--status ACTIVE]
# - flask --app pestcode masters create --funding-source 1 --funding-source-name APBN ...
# - flask --app pestcode masters delete 3
#
# QR codes:
# - flask --app pestcode qr generate --stock-id 1 --quantity 10 [--bulk] --actor admin
# - flask --app pestcode qr bulk-generate --stock-id 1 --total 100 --package-size 12 --actor admin
# - flask --app pestcode qr validate 25071F111B0001
# - flask --app pestcode qr parse 25071F111B-K0001
# - flask --app pestcode qr scan 25071F111B0001 --actor ppl01 --purpose DISTRIBUTION
# - flask --app pestcode qr sequences [--year 25 --month 07] [--status EXHAUSTED]
# - flask --app pestcode qr list [--stock-id 1] [--status GENERATED]
# - flask --app pestcode qr logs [--code-id 7] [--result NOT_FOUND]
# - flask --app pestcode qr print 7 --actor admin
# - flask --app pestcode qr expire 7 --actor admin
# - flask --app pestcode qr delete 7
# - flask --app pestcode qr image 7 --out code.png
# - flask --app pestcode qr stats
# - flask --app pestcode qr health

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Medicine, MedicineStock, QRCodeMaster
from .models.qrcode import (
    CODE_STATUS_EXPIRED,
    CODE_STATUSES,
    MASTER_STATUS_ACTIVE,
    MASTER_STATUSES,
    SCAN_PURPOSES,
    SCAN_RESULTS,
    SEQUENCE_STATUSES,
)
from .services.code_format import parse_code
from .services.code_validation import validate_code
from .services.generation_service import GenerateRequest, BulkGenerateRequest
from .services.qr_image import decode_data_url
from .services.scan_service import ScanContext
from .time_utils import utcnow
from .validation import ValidationError, ConflictError, NotFoundError


DOMAIN_ERRORS = (ValidationError, ConflictError, NotFoundError)


def _services():
    return current_app.extensions["pestcode"]


def _fail(message: str):
    click.echo(f"FAIL {message}")
    raise click.exceptions.Exit(1)


# =============================================================================
# SYSTEM COMMANDS
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (existing tables are left alone)."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'flask --app pestcode system seed-demo' for demo data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Demo medicine 1F111B (fungicide) with a bulk-capable stock and its master."""
    medicine = db.session.query(Medicine).filter_by(name="Demo Fungisida 250 SC").first()
    if medicine is None:
        medicine = Medicine(
            name="Demo Fungisida 250 SC",
            category="Fungisida",
            unit="liter",
            active_ingredient="Difenokonazol 250 g/l",
            producer="PT Demo Agro",
            funding_source_code="1",
            medicine_type_code="F",
            active_ingredient_code="111",
            producer_code="B",
        )
        db.session.add(medicine)
        db.session.flush()
        click.echo(f"PASS Created medicine {medicine.name} (ID: {medicine.id})")
    else:
        click.echo(f"WARN Medicine {medicine.name} already exists (ID: {medicine.id})")

    stock = db.session.query(MedicineStock).filter_by(medicine_id=medicine.id, batch_number="DEMO-001").first()
    if stock is None:
        stock = MedicineStock(
            medicine_id=medicine.id,
            batch_number="DEMO-001",
            package_type_code="K",
            current_stock=100,
            entry_date=utcnow(),
        )
        db.session.add(stock)
        db.session.flush()
        click.echo(f"PASS Created stock batch {stock.batch_number} (ID: {stock.id})")
    else:
        click.echo(f"WARN Stock batch {stock.batch_number} already exists (ID: {stock.id})")

    master = db.session.query(QRCodeMaster).filter_by(
        funding_source_code="1",
        medicine_type_code="F",
        active_ingredient_code="111",
        producer_code="B",
        package_type_code="K",
    ).first()
    if master is None:
        master = QRCodeMaster(
            funding_source_code="1", funding_source_name="APBN",
            medicine_type_code="F", medicine_type_name="Fungisida",
            active_ingredient_code="111", active_ingredient_name="Difenokonazol",
            producer_code="B", producer_name="PT Demo Agro",
            package_type_code="K", package_type_name="Kardus",
            status=MASTER_STATUS_ACTIVE,
            created_by="system",
        )
        db.session.add(master)
        db.session.flush()
        click.echo(f"PASS Created master 1F111B-K (ID: {master.id})")
    else:
        click.echo(f"WARN Master 1F111B-K already exists (ID: {master.id})")

    db.session.commit()


# =============================================================================
# CODE MASTER COMMANDS
# =============================================================================

@click.group('masters')
def masters_group():
    """QR code master registry commands."""


@masters_group.command('list')
@click.option('--status', type=click.Choice(MASTER_STATUSES), help='Filter by status')
@with_appcontext
def list_masters_cli(status):
    """List registered code masters."""
    result = _services().masters.list(status=status)
    masters = result["items"]

    if not masters:
        click.echo("No QR code masters found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Codes':<12} {'Active ingredient':<30} {'Producer':<25} {'Status'}")
    click.echo("="*90)

    for m in masters:
        codes = m["funding_source_code"] + m["medicine_type_code"] + m["active_ingredient_code"] + m["producer_code"]
        if m["package_type_code"]:
            codes += "-" + m["package_type_code"]
        click.echo(f"{m['id']:<5} {codes:<12} {m['active_ingredient_name']:<30} {m['producer_name']:<25} {m['status']}")

    click.echo("="*90 + "\n")


@masters_group.command('create')
@click.option('--funding-source', required=True, help='Funding source code (one digit)')
@click.option('--funding-source-name', required=True)
@click.option('--medicine-type', required=True, help='F, I, H or B')
@click.option('--medicine-type-name', required=True)
@click.option('--active-ingredient', required=True, help='Three-digit ingredient code')
@click.option('--active-ingredient-name', required=True)
@click.option('--producer', required=True, help='Producer letter')
@click.option('--producer-name', required=True)
@click.option('--package-type', help='Package letter for bulk codes')
@click.option('--package-type-name')
@click.option('--actor', default='system', show_default=True)
@with_appcontext
def create_master_cli(funding_source, funding_source_name, medicine_type, medicine_type_name,
                      active_ingredient, active_ingredient_name, producer, producer_name,
                      package_type, package_type_name, actor):
    """Register a new code master."""
    payload = {
        "funding_source_code": funding_source,
        "funding_source_name": funding_source_name,
        "medicine_type_code": medicine_type,
        "medicine_type_name": medicine_type_name,
        "active_ingredient_code": active_ingredient,
        "active_ingredient_name": active_ingredient_name,
        "producer_code": producer,
        "producer_name": producer_name,
    }
    if package_type or package_type_name:
        payload["package_type_code"] = package_type
        payload["package_type_name"] = package_type_name

    try:
        master = _services().masters.create(payload, actor)
    except DOMAIN_ERRORS as exc:
        _fail(str(exc))

    click.echo(f"PASS Created QR code master (ID: {master.id})")


@masters_group.command('delete')
@click.argument('master_id', type=int)
@with_appcontext
def delete_master_cli(master_id):
    """Delete a master that no generated code uses."""
    try:
        _services().masters.delete(master_id)
    except DOMAIN_ERRORS as exc:
        _fail(str(exc))

    click.echo(f"PASS Deleted QR code master {master_id}")


# =============================================================================
# QR CODE COMMANDS
# =============================================================================

@click.group('qr')
def qr_group():
    """QR code generation, validation and scanning commands."""


def _echo_generation(result):
    for code in result.codes:
        click.echo(f"  {code.qr_code_string}")
    for error in result.errors:
        click.echo(f"WARN {error['message']}")

    status = "PASS" if result.success else "FAIL"
    click.echo(f"{status} Generated {result.generated}, failed {result.failed}")
    if not result.success:
        raise click.exceptions.Exit(1)


@qr_group.command('generate')
@click.option('--stock-id', type=int, required=True, help='Medicine stock ID')
@click.option('--quantity', type=int, required=True)
@click.option('--bulk', is_flag=True, help='Generate bulk package codes')
@click.option('--notes')
@click.option('--actor', required=True, help='User recorded as generated_by')
@with_appcontext
def generate_cli(stock_id, quantity, bulk, notes, actor):
    """Generate codes for a medicine stock."""
    request = GenerateRequest(
        medicine_stock_id=stock_id,
        quantity=quantity,
        is_bulk_package=bulk,
        notes=notes,
    )
    try:
        result = _services().generator.generate(request, actor)
    except DOMAIN_ERRORS as exc:
        _fail(str(exc))

    _echo_generation(result)


@qr_group.command('bulk-generate')
@click.option('--stock-id', type=int, required=True, help='Medicine stock ID')
@click.option('--total', 'total_quantity', type=int, required=True, help='Number of items')
@click.option('--package-size', type=int, required=True, help='Items per bulk package')
@click.option('--notes')
@click.option('--actor', required=True)
@with_appcontext
def bulk_generate_cli(stock_id, total_quantity, package_size, notes, actor):
    """Generate unit codes for every item plus one bulk code per package."""
    request = BulkGenerateRequest(
        medicine_stock_id=stock_id,
        total_quantity=total_quantity,
        bulk_package_size=package_size,
        notes=notes,
    )
    try:
        result = _services().generator.bulk_generate(request, actor)
    except DOMAIN_ERRORS as exc:
        _fail(str(exc))

    _echo_generation(result)


@qr_group.command('validate')
@click.argument('code')
@with_appcontext
def validate_cli(code):
    """Check a code string's format (no database lookup)."""
    result = validate_code(code, year_window=current_app.config["QR_YEAR_WARNING_WINDOW"])

    for warning in result.warnings:
        click.echo(f"WARN {warning}")
    if result.is_valid:
        click.echo(f"PASS {code} is a valid QR code")
        return
    for error in result.errors:
        click.echo(f"FAIL {error}")
    raise click.exceptions.Exit(1)


@qr_group.command('parse')
@click.argument('code')
def parse_cli(code):
    """Print a code's components as JSON."""
    components = parse_code(code)
    if components is None:
        _fail("Unable to parse QR code components")
    click.echo(json.dumps(components.to_dict(), indent=2))


@qr_group.command('scan')
@click.argument('code')
@click.option('--actor', required=True)
@click.option('--purpose', type=click.Choice(SCAN_PURPOSES), default='VERIFICATION', show_default=True)
@click.option('--location')
@click.option('--device')
@click.option('--notes')
@with_appcontext
def scan_cli(code, actor, purpose, location, device, notes):
    """Record a scan of a code string."""
    context = ScanContext(location=location, device_info=device, notes=notes)
    outcome = _services().scanner.scan(code, actor, purpose, context)

    if outcome.success:
        click.echo(f"PASS {outcome.result}: {outcome.message} (log {outcome.scan_log.id})")
        return
    click.echo(f"FAIL {outcome.result}: {outcome.message} (log {outcome.scan_log.id})")
    raise click.exceptions.Exit(1)


@qr_group.command('sequences')
@click.option('--year', help='Two-digit year')
@click.option('--month', help='Two-digit month')
@click.option('--status', type=click.Choice(SEQUENCE_STATUSES))
@with_appcontext
def sequences_cli(year, month, status):
    """List sequence counters."""
    sequences = _services().repository.list_sequences(year=year, month=month, status=status)

    if not sequences:
        click.echo("No sequences found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Period':<8} {'Scope':<12} {'Current':<9} {'Regime':<14} {'Total':<8} {'Status'}")
    click.echo("="*90)

    for s in sequences:
        scope = s.funding_source_code + s.medicine_type_code + s.active_ingredient_code + s.producer_code
        if s.package_type_code:
            scope += "-" + s.package_type_code
        click.echo(
            f"{s.id:<5} {s.year + s.month:<8} {scope:<12} {s.current_sequence:<9} "
            f"{s.regime:<14} {s.total_generated:<8} {s.status}"
        )

    click.echo("="*90 + "\n")


@qr_group.command('list')
@click.option('--stock-id', type=int)
@click.option('--status', type=click.Choice(CODE_STATUSES))
@click.option('--search', help='Code substring')
@click.option('--page', type=int, default=1, show_default=True)
@with_appcontext
def list_codes_cli(stock_id, status, search, page):
    """List generated codes, newest first."""
    result = _services().generator.list_codes(
        medicine_stock_id=stock_id, status=status, search=search, page=page
    )
    if not result["items"]:
        click.echo("No QR codes found.")
        return

    for c in result["items"]:
        click.echo(f"{c['id']:<6} {c['qr_code_string']:<20} {c['status']:<12} scans={c['scanned_count']}")

    p = result["pagination"]
    click.echo(f"Page {p['page']}/{p['total_pages']} ({p['total']} codes)")


@qr_group.command('logs')
@click.option('--code-id', type=int)
@click.option('--result', 'scan_result', type=click.Choice(SCAN_RESULTS))
@click.option('--page', type=int, default=1, show_default=True)
@with_appcontext
def scan_logs_cli(code_id, scan_result, page):
    """List scan log entries, newest first."""
    result = _services().scanner.list_scan_logs(qr_code_id=code_id, result=scan_result, page=page)
    if not result["items"]:
        click.echo("No scan logs found.")
        return

    for log in result["items"]:
        click.echo(
            f"{log['id']:<6} {log['scanned_at']:<22} {log['qr_code_string']:<20} "
            f"{log['purpose']:<16} {log['result']:<15} {log['scanned_by']}"
        )


@qr_group.command('print')
@click.argument('code_id', type=int)
@click.option('--actor', required=True)
@with_appcontext
def print_cli(code_id, actor):
    """Mark a code as printed."""
    try:
        code = _services().generator.mark_printed(code_id, actor)
    except DOMAIN_ERRORS as exc:
        _fail(str(exc))
    click.echo(f"PASS {code.qr_code_string} marked printed")


@qr_group.command('expire')
@click.argument('code_id', type=int)
@click.option('--actor', default='system', show_default=True)
@with_appcontext
def expire_cli(code_id, actor):
    """Set a code's status to EXPIRED; later scans report EXPIRED."""
    try:
        code = _services().generator.update_status(code_id, CODE_STATUS_EXPIRED, actor)
    except DOMAIN_ERRORS as exc:
        _fail(str(exc))
    click.echo(f"PASS {code.qr_code_string} expired")


@qr_group.command('delete')
@click.argument('code_id', type=int)
@with_appcontext
def delete_code_cli(code_id):
    """Delete a code that has never been scanned."""
    try:
        _services().generator.delete_code(code_id)
    except DOMAIN_ERRORS as exc:
        _fail(str(exc))
    click.echo(f"PASS Deleted QR code {code_id}")


@qr_group.command('image')
@click.argument('code_id', type=int)
@click.option('--out', 'out_path', type=click.Path(dir_okay=False, writable=True), required=True)
@with_appcontext
def image_cli(code_id, out_path):
    """Write a code's stored PNG to a file."""
    try:
        code = _services().generator.get_code(code_id)
        png = decode_data_url(code.qr_code_image)
    except NotFoundError as exc:
        _fail(str(exc))
    except ValueError:
        _fail(f"QR code {code_id} has no stored image")

    with open(out_path, "wb") as fh:
        fh.write(png)
    click.echo(f"PASS Wrote {len(png)} bytes to {out_path}")


@qr_group.command('stats')
@with_appcontext
def stats_cli():
    """Generation and scanning statistics as JSON."""
    click.echo(json.dumps(_services().generator.statistics(), indent=2))


@qr_group.command('health')
@with_appcontext
def health_cli():
    """Sequence and master counts; warns when sequences are exhausted."""
    health = _services().generator.system_health()
    click.echo(json.dumps(health, indent=2))
    if health["sequences"]["exhausted"]:
        click.echo(f"WARN {health['sequences']['exhausted']} exhausted sequence(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(masters_group)
    app.cli.add_command(qr_group)

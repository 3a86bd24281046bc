"""Agent Stake CLI."""
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Tuple

import click
from loguru import logger

from .core.config import format_amount, get_log_level, get_webhook_url, load_parameters, to_base_units
from .core.engine import StakingEngine
from .core.errors import StakingError
from .core.events import CompositeNotifier, LogNotifier, Notifier, WebhookNotifier
from .core.stake import Stake
from .core.store import get_state_path, locked_state, save_state, state_lock
from .core.transfer import LocalTreasury


def configure_logging(level: str) -> None:
    """Send loguru output to whatever stderr click is currently using."""
    logger.remove()
    logger.add(
        lambda message: click.echo(message, err=True, nl=False),
        level=level,
        format="<level>{level: <8}</level> | {message}",
    )


class AmountType(click.ParamType):
    """Token amount such as 0.05, converted to base units."""
    name = "amount"

    def convert(self, value, param, ctx):
        if isinstance(value, int):
            return value
        try:
            return to_base_units(value)
        except (TypeError, ValueError) as e:
            self.fail(str(e), param, ctx)


AMOUNT = AmountType()


def as_option(f):
    return click.option('--as', 'principal', required=True,
                        help='Principal making the call')(f)


def build_notifier() -> Notifier:
    """Log every event, and also POST it when AGENT_STAKE_WEBHOOK_URL is set."""
    url = get_webhook_url()
    if not url:
        return LogNotifier()
    return CompositeNotifier([LogNotifier(), WebhookNotifier(url)])


@contextmanager
def open_engine(ctx: click.Context, save: bool = True):
    """Load the engine under the state lock, run the command body and persist on success."""
    try:
        with locked_state(ctx.obj["state_path"], notifier=build_notifier(), save=save) as state:
            yield state
    except FileNotFoundError as e:
        logger.error(str(e))
        ctx.exit(1)
    except StakingError as e:
        logger.error(f"{type(e).__name__}: {e}")
        ctx.exit(1)


def echo_stake(stake: Stake) -> None:
    click.echo(f"Stake #{stake.id} [{stake.status.name}]")
    click.echo(f"  staker:     {stake.staker}")
    click.echo(f"  references: {', '.join(stake.referenced_ids)}")
    click.echo(f"  amount:     {format_amount(stake.amount)}")
    click.echo(f"  rationale:  {stake.rationale}")
    click.echo(f"  created at: {stake.created_at}")
    if stake.reward_amount:
        click.echo(f"  reward:     {format_amount(stake.reward_amount)}")
    if stake.slash_amount or stake.slash_reason:
        click.echo(f"  penalty:    {format_amount(stake.slash_amount)} ({stake.slash_reason})")


@click.group()
@click.version_option(package_name="agent-stake")
@click.option('--state-dir', type=click.Path(file_okay=False, path_type=Path),
              help='Directory holding state.json (default: $AGENT_STAKE_HOME or ~/.agent-stake)')
@click.option('--log-level', default=None, help='Log level (default: $AGENT_STAKE_LOG_LEVEL or INFO)')
@click.pass_context
def cli(ctx, state_dir: Optional[Path], log_level: Optional[str]):
    """Agent Stake CLI - stake on connections, resolve, slash and claim rewards."""
    configure_logging((log_level or get_log_level()).upper())
    ctx.ensure_object(dict)
    ctx.obj["state_path"] = get_state_path(state_dir)


@cli.command()
@click.option('--owner', required=True, help='Principal owning the engine')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              help='YAML file with stake parameters')
@click.option('--no-validate', is_flag=True, help='Allow min stake above max stake on update')
@click.option('--force', is_flag=True, help='Overwrite existing state')
@click.pass_context
def init(ctx, owner: str, config_path: Optional[Path], no_validate: bool, force: bool):
    """Create a fresh staking engine."""
    path = ctx.obj["state_path"]
    with state_lock(path):
        if path.exists() and not force:
            logger.error(f"State already exists at {path}, use --force to overwrite")
            ctx.exit(1)
        try:
            params = load_parameters(config_path)
            treasury = LocalTreasury()
            engine = StakingEngine.deploy(owner, treasury, parameters=params,
                                          validate_parameters=not no_validate)
        except (FileNotFoundError, ValueError, StakingError) as e:
            logger.error(f"Failed to initialize: {e}")
            ctx.exit(1)
        save_state(engine, treasury, path)
    click.echo(f"Initialized staking engine owned by {owner} at {path}")


@cli.group()
def wallet():
    """Manage local wallets."""
    pass


@wallet.command()
@click.argument('principal')
@click.argument('amount', type=AMOUNT)
@click.pass_context
def deposit(ctx, principal: str, amount: int):
    """Credit a local wallet."""
    with open_engine(ctx) as (engine, treasury):
        balance = treasury.deposit(principal, amount)
    click.echo(f"{principal} balance: {format_amount(balance)}")


@wallet.command()
@click.argument('principal')
@click.pass_context
def balance(ctx, principal: str):
    """Show a local wallet balance."""
    with open_engine(ctx, save=False) as (engine, treasury):
        click.echo(f"{principal} balance: {format_amount(treasury.balance_of(principal))}")


@cli.command()
@as_option
@click.option('--ref', 'refs', multiple=True, required=True, help='Referenced item id (at least two)')
@click.option('--amount', type=AMOUNT, required=True, help='Amount to stake')
@click.option('--rationale', required=True, help='Why the items should connect')
@click.option('--payment', type=AMOUNT, help='Attached payment (defaults to the amount)')
@click.pass_context
def stake(ctx, principal: str, refs: Tuple[str, ...], amount: int, rationale: str,
          payment: Optional[int]):
    """Stake on a connection between referenced items."""
    with open_engine(ctx) as (engine, treasury):
        stake_id = engine.create_stake(
            principal, list(refs), amount, rationale,
            attached_payment=amount if payment is None else payment,
        )
    click.echo(f"Created stake #{stake_id}")


@cli.command()
@as_option
@click.argument('stake_id', type=int)
@click.option('--success/--failed', required=True, help='Outcome of the claim')
@click.pass_context
def resolve(ctx, principal: str, stake_id: int, success: bool):
    """Resolve an active stake."""
    with open_engine(ctx) as (engine, treasury):
        if success:
            reward = engine.resolve_successful(principal, stake_id)
            click.echo(f"Stake #{stake_id} successful, reward {format_amount(reward)}")
        else:
            engine.resolve_failed(principal, stake_id)
            click.echo(f"Stake #{stake_id} failed")


@cli.command()
@as_option
@click.argument('stake_id', type=int)
@click.option('--reason', required=True, help='Why the stake is slashed')
@click.pass_context
def slash(ctx, principal: str, stake_id: int, reason: str):
    """Slash an active stake."""
    with open_engine(ctx) as (engine, treasury):
        penalty = engine.slash(principal, stake_id, reason)
    click.echo(f"Stake #{stake_id} slashed, penalty {format_amount(penalty)}")


@cli.command()
@as_option
@click.argument('stake_id', type=int)
@click.pass_context
def withdraw(ctx, principal: str, stake_id: int):
    """Withdraw a resolved stake after its lock period."""
    with open_engine(ctx) as (engine, treasury):
        amount = engine.withdraw(principal, stake_id)
    click.echo(f"Withdrew {format_amount(amount)} from stake #{stake_id}")


@cli.command()
@as_option
@click.pass_context
def claim(ctx, principal: str):
    """Claim accrued rewards."""
    with open_engine(ctx) as (engine, treasury):
        amount = engine.claim(principal)
    click.echo(f"Claimed {format_amount(amount)}")


@cli.command()
@as_option
@click.argument('amount', type=AMOUNT)
@click.pass_context
def fund(ctx, principal: str, amount: int):
    """Fund the reward reserve from the owner's wallet."""
    with open_engine(ctx) as (engine, treasury):
        reserve = engine.fund_reserve(principal, amount, attached_payment=amount)
    click.echo(f"Reserve balance: {format_amount(reserve)}")


@cli.command()
@as_option
@click.pass_context
def suspend(ctx, principal: str):
    """Suspend stake creation."""
    with open_engine(ctx) as (engine, treasury):
        engine.set_creation_suspended(principal, True)
    click.echo("Stake creation suspended")


@cli.command()
@as_option
@click.pass_context
def resume(ctx, principal: str):
    """Resume stake creation."""
    with open_engine(ctx) as (engine, treasury):
        engine.set_creation_suspended(principal, False)
    click.echo("Stake creation resumed")


@cli.command('emergency-withdraw')
@as_option
@click.confirmation_option(prompt='Drain all held value to the owner, including staked funds?')
@click.pass_context
def emergency_withdraw(ctx, principal: str):
    """Send every held unit to the owner."""
    with open_engine(ctx) as (engine, treasury):
        amount = engine.emergency_withdraw(principal)
    click.echo(f"Drained {format_amount(amount)} to {principal}")


@cli.group()
def slasher():
    """Manage authorized slashers."""
    pass


@slasher.command('add')
@as_option
@click.argument('target')
@click.pass_context
def slasher_add(ctx, principal: str, target: str):
    """Authorize a principal to slash."""
    with open_engine(ctx) as (engine, treasury):
        added = engine.add_slasher(principal, target)
    click.echo(f"{target} {'authorized' if added else 'was already authorized'}")


@slasher.command('remove')
@as_option
@click.argument('target')
@click.pass_context
def slasher_remove(ctx, principal: str, target: str):
    """Revoke a principal's right to slash."""
    with open_engine(ctx) as (engine, treasury):
        removed = engine.remove_slasher(principal, target)
    click.echo(f"{target} {'revoked' if removed else 'was not authorized'}")


@cli.group()
def params():
    """Show or update stake parameters."""
    pass


@params.command('show')
@click.pass_context
def params_show(ctx):
    """Show current parameters."""
    with open_engine(ctx, save=False) as (engine, treasury):
        p = engine.params
        click.echo(f"Owner:             {engine.owner}")
        click.echo(f"Min stake:         {format_amount(p.min_stake)}")
        click.echo(f"Max stake:         {format_amount(p.max_stake)}")
        click.echo(f"Reward multiplier: {p.reward_multiplier} bp ({p.reward_multiplier / 100}%)")
        click.echo(f"Slash penalty:     {p.slash_penalty} bp ({p.slash_penalty / 100}%)")
        click.echo(f"Lock duration:     {p.lock_duration}s")
        click.echo(f"Creation:          {'suspended' if engine.creation_suspended else 'open'}")
        click.echo(f"Slashers:          {', '.join(sorted(engine.authorized_slashers)) or '-'}")


@params.command('update')
@as_option
@click.option('--min-stake', type=AMOUNT, required=True)
@click.option('--max-stake', type=AMOUNT, required=True)
@click.option('--reward-multiplier', type=int, required=True, help='Basis points')
@click.option('--slash-penalty', type=int, required=True, help='Basis points')
@click.pass_context
def params_update(ctx, principal: str, min_stake: int, max_stake: int,
                  reward_multiplier: int, slash_penalty: int):
    """Overwrite stake bounds and rates."""
    with open_engine(ctx) as (engine, treasury):
        engine.update_parameters(principal, min_stake, max_stake, reward_multiplier, slash_penalty)
    click.echo("Parameters updated")


@cli.command()
@click.argument('stake_id', type=int)
@click.pass_context
def show(ctx, stake_id: int):
    """Show a stake."""
    with open_engine(ctx, save=False) as (engine, treasury):
        echo_stake(engine.get_stake(stake_id))


@cli.command()
@click.argument('principal')
@click.pass_context
def stats(ctx, principal: str):
    """Show a participant's totals."""
    with open_engine(ctx, save=False) as (engine, treasury):
        s = engine.get_participant_stats(principal)
        click.echo(f"Total staked:    {format_amount(s.active_staked)}")
        click.echo(f"Claimable:       {format_amount(s.claimable_rewards)}")
        click.echo(f"Active stakes:   {s.active_stake_count}")


@cli.command('list')
@click.option('--ref', help='Referenced item id')
@click.option('--participant', help='Staker principal')
@click.pass_context
def list_stakes(ctx, ref: Optional[str], participant: Optional[str]):
    """List stakes by referenced item or participant."""
    if bool(ref) == bool(participant):
        raise click.UsageError("Pass exactly one of --ref or --participant")
    with open_engine(ctx, save=False) as (engine, treasury):
        stakes = (engine.get_stakes_for_reference(ref) if ref
                  else engine.get_stakes_for_participant(participant))
        if not stakes:
            click.echo("No stakes found")
        for s in stakes:
            click.echo(f"#{s.id:<5} {s.status.name:<10} {format_amount(s.amount):>10}  "
                       f"{s.staker}  {' <-> '.join(s.referenced_ids)}")


@cli.command()
@click.pass_context
def summary(ctx):
    """Show engine-wide totals."""
    with open_engine(ctx, save=False) as (engine, treasury):
        click.echo(f"Stakes:              {engine.stake_count}")
        click.echo(f"Total staked:        {format_amount(engine.total_staked)}")
        click.echo(f"Rewards distributed: {format_amount(engine.total_rewards_distributed)}")
        click.echo(f"Held balance:        {format_amount(engine.held_balance)}")
        click.echo(f"Reserve balance:     {format_amount(engine.reserve_balance)}")


if __name__ == '__main__':
    cli(obj={})

import argparse
import json
import math
import sys
from typing import IO, Optional, Sequence
from loguru import logger

from expression_rule.config import (
    LOG_LEVEL,
    get_rule_config,
    get_max_variables,
    get_reason_timezone,
    get_logging_config,
    reload_config,
)
from expression_rule.utils.logging import setup_logging
from expression_rule.expression.bindings import VariableBindings, MAX_VARIABLES
from expression_rule.expression.errors import CompileError
from expression_rule.expression.evaluator import compile_expression
from expression_rule.rules.plugin import plugin_eval, plugin_reason, plugin_shutdown
from expression_rule.rules.simple_expression import SimpleExpressionRule


def check_expression(expression: str, datapoints: Sequence[str]) -> bool:
    """
    Compile the expression against the declared datapoint names.

    Returns:
        True if it compiles, False otherwise (error is logged)
    """
    bindings = VariableBindings()
    for name in datapoints:
        bindings.upsert(name, math.nan)

    try:
        compile_expression(expression, bindings.snapshot_for_compilation())
    except CompileError as e:
        logger.error(f"Expression check failed: {e}")
        return False

    logger.info(f"Expression OK: '{expression}' (variables: {', '.join(bindings.names()) or 'none'})")
    return True


def replay(rule: SimpleExpressionRule, stream: IO[str], tz_name: str = "UTC") -> int:
    """
    Run one evaluation cycle per JSON line and print the reason for each.

    Returns:
        Number of cycles evaluated
    """
    cycles = 0
    for line_no, line in enumerate(stream, start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        result = plugin_eval(rule, line)
        reason = plugin_reason(rule, tz_name)
        reason["cycle"] = line_no
        reason["result"] = result
        print(json.dumps(reason), flush=True)
        cycles += 1

    logger.info(f"Replay finished: {cycles} cycles")
    return cycles


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="SimpleExpression notification rule")
    parser.add_argument("--config", help="Rule config YAML (default: $CONFIG_FILE)")
    parser.add_argument("--asset", help="Override rule.asset")
    parser.add_argument("--expression", help="Override rule.expression")
    parser.add_argument("--check", action="store_true", help="Compile the expression against rule.datapoints and exit")
    parser.add_argument("--replay", metavar="PATH", help="JSON-lines file of cycles ('-' for stdin)")
    parser.add_argument("--log-level", default=None, help="Log level (default: $LOG_LEVEL)")
    args = parser.parse_args(argv)

    try:
        if args.config:
            reload_config(args.config)
        rule_cfg = get_rule_config()
        logging_cfg = get_logging_config()
        tz_name = get_reason_timezone()
        max_variables = get_max_variables()
    except (FileNotFoundError, ValueError) as e:
        if not (args.asset and args.expression):
            setup_logging(args.log_level or LOG_LEVEL)
            logger.error(f"Cannot load configuration: {e}")
            return 2
        rule_cfg = {'asset': '', 'expression': '', 'datapoints': [], 'extra_assets': []}
        logging_cfg = {'level': LOG_LEVEL, 'file': None}
        tz_name = "UTC"
        max_variables = MAX_VARIABLES

    setup_logging(args.log_level or logging_cfg.get('level', LOG_LEVEL), logging_cfg.get('file'))

    if args.asset:
        rule_cfg['asset'] = args.asset
    if args.expression:
        rule_cfg['expression'] = args.expression

    if args.check:
        return 0 if check_expression(rule_cfg['expression'], rule_cfg['datapoints']) else 1

    rule = SimpleExpressionRule(max_variables=max_variables)
    rule.configure(rule_cfg['asset'], rule_cfg['expression'], rule_cfg['extra_assets'])
    if not rule.is_configured():
        logger.error("Rule is not fully configured (need asset and expression)")
        return 2

    try:
        if args.replay and args.replay != "-":
            with open(args.replay, 'r', encoding='utf-8') as f:
                replay(rule, f, tz_name)
        else:
            logger.info("Reading cycles from stdin (one JSON object per line, Ctrl-D to end)")
            replay(rule, sys.stdin, tz_name)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    finally:
        plugin_shutdown(rule)

    return 0


if __name__ == "__main__":
    sys.exit(main())

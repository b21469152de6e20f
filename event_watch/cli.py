"""
Command-line entry point.

    event-watch run                     start the scheduler (foreground)
    event-watch stop                    stop a running scheduler
    event-watch status                  liveness, next runs, recent runs, cache stats
    event-watch detect [--max N]        one event detection run now
    event-watch refresh-followings      one followings refresh now
    event-watch events [--limit ...]    recent accepted events
    event-watch stats [--account A]     event and followings statistics
    event-watch config show|set k=v     view or edit scheduler settings
"""
import argparse
import json
import logging
import sys
from dataclasses import replace

from event_watch import config as settings
from event_watch import pidfile
from event_watch.errors import ConfigurationInvalid, DataUnavailable, EventWatchError, SchedulerAlreadyRunning

logger = logging.getLogger('event_watch.cli')


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def cmd_run(runtime, args):
    settings.require_credentials()
    scheduler = runtime.scheduler()
    runtime.cache.start()
    try:
        scheduler.run_forever()
    finally:
        runtime.cache.stop()
    return 0


def cmd_stop(runtime, args):
    outcome = pidfile.terminate(runtime.pid_file, timeout=args.timeout)
    print({
        'not_running': 'Scheduler is not running',
        'stopped': 'Scheduler stopped',
        'killed': 'Scheduler did not stop in time and was killed',
    }[outcome])
    return 0


def cmd_status(runtime, args):
    from event_watch.scheduler import DETECTION_JOB, next_cadence_run
    from event_watch.services.reporting import scheduler_status

    status = scheduler_status(runtime.pid_file, runtime.status)
    if status['is_running'] and not status['next_runs'].get(DETECTION_JOB):
        cfg = runtime.load_config()
        status['next_runs'][DETECTION_JOB] = next_cadence_run(cfg.event_detector_interval_hours).isoformat()
    _print_json(status)
    return 0


def cmd_detect(runtime, args):
    cfg = runtime.load_config()
    if args.max is not None:
        cfg = replace(cfg, max_accounts=args.max).validate()
    stats = runtime.run_detection(cfg)
    _print_json(stats.to_dict())
    return 0


def cmd_refresh_followings(runtime, args):
    cfg = runtime.load_config()
    result = runtime.run_followings(cfg)
    _print_json(result.to_dict())
    return 0


def cmd_events(runtime, args):
    from event_watch.services.reporting import recent_events
    _print_json(recent_events(runtime.store, args.limit, args.offset, args.min_confidence))
    return 0


def cmd_stats(runtime, args):
    from event_watch.services.reporting import event_stats, followings_stats

    data = {'events': event_stats(runtime.store)}
    account = args.account or runtime.main_account
    if account:
        data['followings'] = followings_stats(runtime.store, account)
    _print_json(data)
    return 0


def cmd_config(runtime, args):
    if args.config_action == 'set':
        changes = {}
        for pair in args.pairs:
            key, sep, value = pair.partition('=')
            if not sep:
                raise ConfigurationInvalid(f'expected key=value, got {pair!r}')
            changes[key.strip()] = value.strip()
        cfg = settings.update_scheduler_config(changes, runtime.config_path)
        print(f"Saved {runtime.config_path}; a running scheduler picks it up on its next run")
    else:
        cfg = runtime.load_config()
    _print_json(cfg.to_dict())
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog='event-watch', description='Instagram event watcher')
    parser.add_argument('--config', help='scheduler YAML config path')
    parser.add_argument('--pid-file', help='scheduler PID file path')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('run', help='start the scheduler in the foreground').set_defaults(func=cmd_run)

    stop = sub.add_parser('stop', help='stop the running scheduler')
    stop.add_argument('--timeout', type=float, default=settings.SCHEDULER_STOP_TIMEOUT,
                      help='seconds to wait before SIGKILL')
    stop.set_defaults(func=cmd_stop)

    sub.add_parser('status', help='scheduler liveness and next runs').set_defaults(func=cmd_status)

    detect = sub.add_parser('detect', help='run event detection once')
    detect.add_argument('--max', type=int, help='only scan the first N followed accounts')
    detect.set_defaults(func=cmd_detect)

    sub.add_parser('refresh-followings', help='refresh the watch list once').set_defaults(func=cmd_refresh_followings)

    events = sub.add_parser('events', help='list accepted events')
    events.add_argument('--limit', type=int, default=20)
    events.add_argument('--offset', type=int, default=0)
    events.add_argument('--min-confidence', type=float)
    events.set_defaults(func=cmd_events)

    stats = sub.add_parser('stats', help='event and followings statistics')
    stats.add_argument('--account', help='defaults to INSTAGRAM_ACCOUNT')
    stats.set_defaults(func=cmd_stats)

    cfg = sub.add_parser('config', help='show or edit scheduler settings')
    cfg_sub = cfg.add_subparsers(dest='config_action', required=True)
    cfg_sub.add_parser('show')
    cfg_set = cfg_sub.add_parser('set')
    cfg_set.add_argument('pairs', nargs='+', metavar='key=value')
    cfg.set_defaults(func=cmd_config)

    return parser


def main(argv=None, runtime=None):
    args = build_parser().parse_args(argv)
    if runtime is None:
        from event_watch import create_runtime
        runtime = create_runtime(config_path=args.config, pid_file=args.pid_file)

    try:
        return args.func(runtime, args)
    except ConfigurationInvalid as e:
        logger.error("%s", e)
        return 2
    except SchedulerAlreadyRunning as e:
        logger.error("%s", e)
        return 1
    except DataUnavailable as e:
        logger.warning("%s", e)
        return 0
    except EventWatchError as e:
        logger.error("%s", e, exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())

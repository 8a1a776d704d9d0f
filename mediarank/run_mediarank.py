import argparse
import json
import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from mediarank.core import library, maintenance
from mediarank.core.export import write_csv_export, write_json_export
from mediarank.core.rank import get_due_comparisons, get_ranking_stats, get_top_items, get_unranked_count
from mediarank.core.stats import StatsTracker
from mediarank.infra.config import ConfigManager
from mediarank.infra.scoring import Glicko2RatingAlgorithm, SmartPairingStrategy
from mediarank.infra.scoring.constants import MEDIA_TYPES, WATCH_STATUSES
from mediarank.infra.scoring.ranking_orchestrator import RankingOrchestrator
from mediarank.storage.sqlite_storage import SQLiteStorage
from mediarank.utils.logger import apply_logging_settings, configure_root_logger, get_logger
from mediarank.utils.env_loader import load_project_env

configure_root_logger(level='INFO', log_to_file=True, log_to_console=True)
logger = get_logger(__name__)


def build_storage(config_manager: ConfigManager) -> SQLiteStorage:
    return SQLiteStorage(
        db_path=config_manager.get_storage_db_path(),
        **config_manager.get_storage_tables(),
    )


def build_orchestrator(config_manager: ConfigManager, storage: SQLiteStorage) -> RankingOrchestrator:
    """根据配置组装评分算法、配对策略和编排器"""
    rating = config_manager.get_rating_settings()
    pairing = config_manager.get_pairing_settings()
    scheduling = config_manager.get_scheduling_settings()

    algorithm = Glicko2RatingAlgorithm(
        init_rating=rating['init_rating'],
        init_rd=rating['init_rd'],
        init_volatility=rating['init_volatility'],
        tau=rating['tau'],
        confidence_threshold=pairing['confidence_threshold'],
        convergence_tolerance=rating['convergence_tolerance'],
        max_iterations=rating['max_iterations'],
    )
    seed = pairing.get('random_seed')
    rng = random.Random(seed) if seed is not None else None
    strategy = SmartPairingStrategy(
        rng=rng,
        confidence_threshold=pairing['confidence_threshold'],
        close_rating_range=pairing['close_rating_range'],
    )
    user_id = config_manager.get_user_id()
    return RankingOrchestrator(
        storage=storage,
        rating_algorithm=algorithm,
        pairing_strategy=strategy,
        stats_tracker=StatsTracker(
            storage,
            user_id=user_id,
            confidence_threshold=pairing['confidence_threshold'],
        ),
        logger=logger,
        rankable_statuses=pairing['rankable_statuses'],
        resurface_days_new=scheduling['resurface_days_new'],
        resurface_days_established=scheduling['resurface_days_established'],
        user_id=user_id,
    )


def parse_skip_pair(value: str) -> Tuple[int, int]:
    """解析 "A:B" 格式的跳过配对"""
    try:
        first, second = value.split(':')
        return int(first), int(second)
    except ValueError:
        raise argparse.ArgumentTypeError(f"跳过配对格式应为 A:B，收到: {value}")



def parse_undo_data(value: str) -> Dict[str, Any]:
    """解析 compare/tie 命令输出的撤销数据（JSON）"""
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"撤销数据不是合法的JSON: {e}")
    if not isinstance(data, dict):
        raise argparse.ArgumentTypeError("撤销数据必须是JSON对象")
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MediaRank 两两比较排名工具")
    parser.add_argument('--config', type=str, required=True, help='YAML配置文件路径')
    subparsers = parser.add_subparsers(dest='command', required=True)

    add_parser = subparsers.add_parser('add', help='加入条目库')
    add_parser.add_argument('title')
    add_parser.add_argument('--type', dest='media_type', choices=MEDIA_TYPES, required=True)
    add_parser.add_argument('--status', choices=WATCH_STATUSES, default='COMPLETED')
    add_parser.add_argument('--external-id')
    add_parser.add_argument('--notes')

    status_parser = subparsers.add_parser('status', help='更新观看状态或备注')
    status_parser.add_argument('item_id', type=int)
    status_parser.add_argument('--status', choices=WATCH_STATUSES)
    status_parser.add_argument('--notes')

    pair_parser = subparsers.add_parser('pair', help='选出下一组待比较条目')
    pair_parser.add_argument('--type', dest='media_type', choices=MEDIA_TYPES, required=True)
    pair_parser.add_argument('--skip', type=parse_skip_pair, action='append', default=[], help='跳过的配对 A:B')

    compare_parser = subparsers.add_parser('compare', help='记录胜负')
    compare_parser.add_argument('winner_id', type=int)
    compare_parser.add_argument('loser_id', type=int)

    tie_parser = subparsers.add_parser('tie', help='记录平局')
    tie_parser.add_argument('item1_id', type=int)
    tie_parser.add_argument('item2_id', type=int)

    undo_parser = subparsers.add_parser('undo', help='撤销一次比较')
    undo_parser.add_argument('comparison_id', type=int)
    undo_parser.add_argument('--data', type=parse_undo_data, required=True, help='compare/tie 输出的撤销数据JSON')

    history_parser = subparsers.add_parser('history', help='查看最近的比较记录')
    history_parser.add_argument('--limit', type=int, default=20)

    subparsers.add_parser('decay', help='对长期未比较条目做RD衰减')
    subparsers.add_parser('archive', help='归档过期比较记录')

    rank_parser = subparsers.add_parser('rank', help='查看排行榜')
    rank_parser.add_argument('--type', dest='media_type', choices=MEDIA_TYPES)
    rank_parser.add_argument('--limit', type=int, default=10)

    subparsers.add_parser('stats', help='查看统计')

    export_parser = subparsers.add_parser('export', help='导出数据')
    export_parser.add_argument('--format', choices=('json', 'csv'), default='json')
    export_parser.add_argument('--output', type=str, required=True)
    export_parser.add_argument('--type', dest='media_type', choices=MEDIA_TYPES)

    return parser


def run_command(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    storage = build_storage(config_manager)
    orchestrator = build_orchestrator(config_manager, storage)
    maintenance_settings = config_manager.get_maintenance_settings()
    threshold = orchestrator.stats_tracker.confidence_threshold
    scheduling = config_manager.get_scheduling_settings()

    if args.command == 'add':
        item_id = library.add_to_library(
            storage,
            title=args.title,
            media_type=args.media_type,
            watch_status=args.status,
            external_id=args.external_id,
            notes=args.notes,
            user_id=orchestrator.user_id,
            algorithm=orchestrator.rating_algorithm,
            stats_tracker=orchestrator.stats_tracker,
        )
        logger.info(f"新条目ID: {item_id}")
        unranked = get_unranked_count(storage, args.media_type, threshold=threshold)
        if unranked >= scheduling['unranked_notification_threshold']:
            logger.info(f"{args.media_type} 有 {unranked} 个未排名条目，建议进行比较")

    elif args.command == 'status':
        item = library.update_library_item(storage, args.item_id, watch_status=args.status, notes=args.notes)
        logger.info(f"条目 #{item['id']} 状态: {item['watch_status']}, 需要重排: {item['needs_reranking']}")

    elif args.command == 'pair':
        result = orchestrator.get_smart_pair_with_stats(args.media_type, skipped_pairs=args.skip)
        pair = result['pair']
        if pair is None:
            logger.info("没有可用的配对")
        else:
            first, second = pair
            logger.info(
                f"下一组比较: #{first['id']} {first['title']} ({first['rating']:.0f}±{first['rd']:.0f}) "
                f"vs #{second['id']} {second['title']} ({second['rating']:.0f}±{second['rd']:.0f})"
            )
        logger.info(f"候选池统计: {json.dumps(result['stats'], ensure_ascii=False)}")

    elif args.command == 'compare':
        result = orchestrator.record_comparison(args.winner_id, args.loser_id)
        logger.info(f"撤销数据: {json.dumps(result['undo_data'], ensure_ascii=False)}")

    elif args.command == 'tie':
        result = orchestrator.record_tie(args.item1_id, args.item2_id)
        logger.info(f"撤销数据: {json.dumps(result['undo_data'], ensure_ascii=False)}")

    elif args.command == 'undo':
        orchestrator.undo_comparison(args.comparison_id, args.data)

    elif args.command == 'history':
        history = orchestrator.get_history(limit=args.limit)
        if not history:
            logger.info("暂无比较记录")
        for entry in history:
            winner = entry['winner']['title'] if entry['winner'] else f"#{entry['winner_id']}(已移除)"
            loser = entry['loser']['title'] if entry['loser'] else f"#{entry['loser_id']}(已移除)"
            logger.info(f"  #{entry['id']} {winner} {'=' if entry['is_tie'] else '>'} {loser}")

    elif args.command == 'decay':
        maintenance.decay_ratings(
            storage,
            decay_per_day=maintenance_settings['rd_decay_per_day'],
            algorithm=orchestrator.rating_algorithm,
        )

    elif args.command == 'archive':
        maintenance.archive_old_comparisons(
            storage,
            retention_days=maintenance_settings['comparison_retention_days'],
        )

    elif args.command == 'rank':
        top_items = get_top_items(storage, media_type=args.media_type, limit=args.limit)
        if not top_items:
            logger.info("条目库为空")
        for entry in top_items:
            logger.info(
                f"  {entry['rank']}. {entry['title']} [{entry['type']}] - "
                f"{entry['rating']:.0f} ±{entry['rd']:.0f} (分数 {entry['percentile_score']})"
            )

    elif args.command == 'stats':
        logger.info(f"排名统计: {json.dumps(get_ranking_stats(storage, threshold=threshold), ensure_ascii=False)}")
        logger.info(f"待比较: {json.dumps(get_due_comparisons(storage, threshold=threshold), ensure_ascii=False)}")
        logger.info(f"活动统计: {json.dumps(orchestrator.stats_tracker.get_aggregated_stats(), ensure_ascii=False)}")

    elif args.command == 'export':
        output_path = Path(args.output)
        if args.format == 'json':
            write_json_export(storage, output_path)
        else:
            write_csv_export(storage, output_path, media_type=args.media_type)

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_project_env()

    parser = build_parser()
    args = parser.parse_args(argv)
    config_path = args.config

    logger.info(f"MediaRank 启动 - 配置文件: {config_path}, 命令: {args.command}")

    try:
        config_manager = ConfigManager(config_path)

        validation_errors = config_manager.validate_config()
        if validation_errors:
            logger.error("配置验证失败，发现以下问题：")
            for error in validation_errors:
                logger.error(f"  - {error}")
            logger.error("请修复配置文件后重试")
            return 2
        logging_settings = config_manager.get_logging_settings()
        apply_logging_settings(
            level=logging_settings['level'],
            log_to_file=logging_settings['log_to_file'],
            log_to_console=logging_settings['log_to_console'],
        )
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"配置加载失败: {e}")
        return 2

    try:
        return run_command(args, config_manager)
    except (LookupError, ValueError) as e:
        logger.error(f"命令执行失败: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

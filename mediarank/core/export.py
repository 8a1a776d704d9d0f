"""
数据导出模块
完整 JSON 导出（条目库 + 比较记录 + 汇总）与 CSV 排名表导出
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from mediarank.core.rank import percentile_score
from mediarank.infra.scoring.constants import MEDIA_TYPES
from mediarank.storage.sqlite_storage import SQLiteStorage
from mediarank.utils.logger import get_logger

logger = get_logger(__name__)

EXPORT_VERSION = "1.0"

CSV_COLUMNS = [
    'rank',
    'title',
    'type',
    'rating',
    'rd',
    'percentile_score',
    'comparison_count',
    'watch_status',
]


def build_full_export(storage: SQLiteStorage) -> Dict[str, Any]:
    """构建完整导出数据: 按评分排序的条目库、比较记录（新在前）与汇总计数"""
    items = storage.list_library_items(order_by='rating_desc')
    comparisons = storage.list_comparisons()

    library = [
        {
            'rank': rank,
            'id': item['id'],
            'external_id': item['external_id'],
            'title': item['title'],
            'type': item['media_type'],
            'rating': item['rating'],
            'rd': item['rd'],
            'volatility': item['volatility'],
            'comparison_count': item['comparison_count'],
            'total_wins': item['total_wins'],
            'total_losses': item['total_losses'],
            'total_ties': item['total_ties'],
            'watch_status': item['watch_status'],
            'notes': item['notes'],
            'added_at': item['added_at'],
            'updated_at': item['updated_at'],
        }
        for rank, item in enumerate(items, 1)
    ]

    stats: Dict[str, Any] = {
        'total_items': len(items),
        'total_comparisons': len(comparisons),
    }
    for media_type in MEDIA_TYPES:
        stats[f'{media_type.lower()}_count'] = sum(1 for item in items if item['media_type'] == media_type)

    return {
        'exported_at': datetime.now(timezone.utc).isoformat(),
        'version': EXPORT_VERSION,
        'library': library,
        'comparisons': [
            {
                'winner_id': c['winner_id'],
                'loser_id': c['loser_id'],
                'is_tie': c['is_tie'],
                'created_at': c['created_at'],
            }
            for c in comparisons
        ],
        'stats': stats,
    }


def build_csv_frame(storage: SQLiteStorage, media_type: Optional[str] = None) -> pd.DataFrame:
    """构建排名表（DataFrame），可按媒体类型过滤；排名与百分位在过滤后计算"""
    items = storage.list_library_items(media_type=media_type, order_by='rating_desc')
    total = len(items)
    records = [
        {
            'rank': rank,
            'title': item['title'],
            'type': item['media_type'],
            'rating': item['rating'],
            'rd': item['rd'],
            'percentile_score': percentile_score(rank, total),
            'comparison_count': item['comparison_count'],
            'watch_status': item['watch_status'],
        }
        for rank, item in enumerate(items, 1)
    ]
    return pd.DataFrame(records, columns=CSV_COLUMNS)


def write_json_export(storage: SQLiteStorage, output_path: Path) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    data = build_full_export(storage)
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    logger.info(f"已导出JSON: {output_path} (条目 {data['stats']['total_items']}, 比较 {data['stats']['total_comparisons']})")
    return output_path


def write_csv_export(storage: SQLiteStorage, output_path: Path, media_type: Optional[str] = None) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df = build_csv_frame(storage, media_type)
    df.to_csv(output_path, index=False, encoding='utf-8-sig')
    logger.info(f"已导出CSV: {output_path} (行数 {len(df)})")
    return output_path

"""
SQLiteStorage单元测试
"""

import pytest

from mediarank.storage.sqlite_storage import SQLiteStorage


@pytest.fixture
def storage(tmp_path):
    return SQLiteStorage(db_path=str(tmp_path / 'data' / 'test.db'))


def make_payload(title, media_type='ANIME', **overrides):
    payload = {
        'title': title,
        'media_type': media_type,
        'watch_status': 'COMPLETED',
        'rating': 1500,
        'rd': 350,
        'volatility': 0.06,
        'added_at': 1000.0,
    }
    payload.update(overrides)
    return payload


def test_creates_database_directory(tmp_path):
    """测试自动创建数据库目录"""
    SQLiteStorage(db_path=str(tmp_path / 'nested' / 'dir' / 'x.db'))
    assert (tmp_path / 'nested' / 'dir' / 'x.db').exists()


def test_invalid_table_name(tmp_path):
    """测试非法表名被拒绝"""
    with pytest.raises(ValueError, match="非法的SQLite标识符"):
        SQLiteStorage(db_path=str(tmp_path / 'x.db'), library_table='items; DROP TABLE x')


def test_add_and_get_library_item(storage):
    """测试新增并读取条目"""
    item_id = storage.add_library_item(make_payload('Frieren', external_id='anilist:154587'))
    item = storage.get_library_item(item_id)

    assert item['title'] == 'Frieren'
    assert item['rating'] == 1500
    assert item['needs_reranking'] is False
    assert item['comparison_count'] == 0
    assert item['added_at'] == 1000.0
    assert item['updated_at'] == 1000.0


def test_get_missing_item(storage):
    """测试读取不存在的条目"""
    assert storage.get_library_item(999) is None


def test_find_by_external_id(storage):
    """测试按外部ID查找（按用户区分）"""
    storage.add_library_item(make_payload('Frieren', external_id='anilist:1'))
    storage.add_library_item(make_payload('Frieren', external_id='anilist:1', user_id='alice'))

    assert storage.find_library_item_by_external_id('anilist:1')['user_id'] is None
    assert storage.find_library_item_by_external_id('anilist:1', 'alice')['user_id'] == 'alice'
    assert storage.find_library_item_by_external_id('anilist:2') is None


def test_list_library_items_filters(storage):
    """测试条目列表过滤与排序"""
    storage.add_library_item(make_payload('A', rating=1600, rd=100))
    storage.add_library_item(make_payload('B', rating=1700, rd=300))
    storage.add_library_item(make_payload('C', media_type='MANGA', rating=1800, rd=150))
    storage.add_library_item(make_payload('D', watch_status='PLAN_TO_WATCH', rating=1550, rd=350))

    assert [i['title'] for i in storage.list_library_items(order_by='rating_desc')] == ['C', 'B', 'A', 'D']
    assert [i['title'] for i in storage.list_library_items(media_type='MANGA')] == ['C']
    assert [i['title'] for i in storage.list_library_items(max_rd=200)] == ['A', 'C']
    assert [i['title'] for i in storage.list_library_items(min_rd=200, order_by='rd_desc')] == ['D', 'B']
    assert [i['title'] for i in storage.list_library_items(watch_statuses=['COMPLETED'], media_type='ANIME')] == ['A', 'B']
    assert storage.list_library_items(watch_statuses=[]) == []


def test_list_library_items_invalid_order(storage):
    """测试不支持的排序方式"""
    with pytest.raises(ValueError):
        storage.list_library_items(order_by='title')


def test_update_library_item(storage):
    """测试按列更新条目"""
    item_id = storage.add_library_item(make_payload('A'))
    storage.update_library_item(item_id, {'rating': 1662, 'rd': 290, 'needs_reranking': True})

    item = storage.get_library_item(item_id)
    assert item['rating'] == 1662
    assert item['rd'] == 290
    assert item['needs_reranking'] is True


def test_update_library_item_rejects_unknown_columns(storage):
    """测试更新白名单之外的字段被拒绝"""
    item_id = storage.add_library_item(make_payload('A'))

    with pytest.raises(ValueError, match="不允许更新的字段"):
        storage.update_library_item(item_id, {'id': 5})


def test_delete_library_item(storage):
    """测试删除条目"""
    item_id = storage.add_library_item(make_payload('A'))

    assert storage.delete_library_item(item_id) is True
    assert storage.delete_library_item(item_id) is False
    assert storage.get_library_item(item_id) is None


def test_comparisons_log(storage):
    """测试比较记录的写入、倒序列表和删除"""
    first = storage.insert_comparison(1, 2, False, created_at=100.0)
    second = storage.insert_comparison(2, 3, True, created_at=200.0)

    comparisons = storage.list_comparisons()
    assert [c['id'] for c in comparisons] == [second, first]
    assert comparisons[0]['is_tie'] is True
    assert [c['id'] for c in storage.list_comparisons(limit=1)] == [second]

    assert storage.delete_comparison(first) is True
    assert storage.get_comparison(first) is None


def test_delete_comparisons_before(storage):
    """测试按时间删除比较记录"""
    storage.insert_comparison(1, 2, False, created_at=100.0)
    storage.insert_comparison(1, 3, False, created_at=150.0)
    storage.insert_comparison(2, 3, False, created_at=300.0)

    assert storage.delete_comparisons_before(200.0) == 2
    assert len(storage.list_comparisons()) == 1


def test_comparison_pair_counter(storage):
    """测试配对计数: 与顺序无关，减到零时删除"""
    storage.upsert_comparison_pair(5, 2, compared_at=100.0)
    storage.upsert_comparison_pair(2, 5, compared_at=200.0)

    pair = storage.get_comparison_pair(2, 5)
    assert pair['item_a'] == 2
    assert pair['item_b'] == 5
    assert pair['comparison_count'] == 2
    assert pair['last_compared_at'] == 200.0

    storage.decrement_comparison_pair(5, 2)
    assert storage.get_comparison_pair(2, 5)['comparison_count'] == 1

    storage.decrement_comparison_pair(2, 5)
    assert storage.get_comparison_pair(2, 5) is None

    # 不存在时忽略
    storage.decrement_comparison_pair(2, 5)


def test_user_stats_document(storage):
    """测试统计文档按用户读写"""
    assert storage.load_user_stats() is None

    storage.save_user_stats({'total_comparisons': 3})
    storage.save_user_stats({'total_comparisons': 4})
    storage.save_user_stats({'total_comparisons': 9}, user_id='alice')

    assert storage.load_user_stats() == {'total_comparisons': 4}
    assert storage.load_user_stats('alice') == {'total_comparisons': 9}

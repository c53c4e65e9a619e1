import time

UNREAD, IN_PROGRESS, READ = 0, 1, 2


def update_series_status(conn, series_id):
    """Recomputes a series' read status from its volumes' progress.

    Read when every volume is completed, in progress when any volume has been
    opened past page 0, unread otherwise. Only writes when the value changes.
    Returns the resulting status, or None for an unknown series.
    """
    cursor = conn.cursor()
    cursor.execute("SELECT owner_id, status FROM series WHERE id = ?", (series_id,))
    series = cursor.fetchone()
    if not series:
        return None

    cursor.execute("""
        SELECT
            COUNT(*) AS total,
            COALESCE(SUM(CASE WHEN p.completed = 1 THEN 1 ELSE 0 END), 0) AS read_count,
            COALESCE(SUM(CASE WHEN p.page >= 1 THEN 1 ELSE 0 END), 0) AS started_count
        FROM volumes v
        LEFT JOIN user_progress p ON p.volume_id = v.id AND p.user_id = ?
        WHERE v.series_id = ?
    """, (series['owner_id'], series_id))
    counts = cursor.fetchone()

    if counts['total'] == 0:
        status = UNREAD
    elif counts['read_count'] == counts['total']:
        status = READ
    elif counts['started_count'] > 0:
        status = IN_PROGRESS
    else:
        status = UNREAD

    if series['status'] != status:
        cursor.execute("UPDATE series SET status = ?, updated_at = ? WHERE id = ?", (status, time.time(), series_id))
    return status

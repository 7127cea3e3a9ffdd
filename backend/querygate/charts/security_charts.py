"""
Authentication and session charts from session_log.

session_log only exists when the server enables it, so every chart here is
optional and checks the table first.
"""
from __future__ import annotations

from ..intervals import ClickHouseInterval, apply_interval, build_time_filter, fill_step, now_or_today
from ..schemas import ChartQueryParams, ChartQueryResult
from .registry import and_clause, hours_or, interval_or

SESSION_LOG = "system.session_log"


def _session_chart(query: str) -> ChartQueryResult:
    return ChartQueryResult(query=query, optional=True, table_check=SESSION_LOG)


def login_success_rate(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.HOUR)
    time_filter = and_clause(build_time_filter(hours_or(params, 24 * 7)))
    return _session_chart(f"""
    SELECT {apply_interval(interval, 'event_time')},
           countIf(type = 'LoginSuccess') AS success_count,
           countIf(type = 'LoginFailure') AS failure_count,
           round(100 * success_count / (success_count + failure_count), 2) AS success_rate
    FROM system.session_log
    WHERE type IN ('LoginSuccess', 'LoginFailure')
          {time_filter}
    GROUP BY event_time
    ORDER BY event_time
    WITH FILL TO {now_or_today(interval)} STEP {fill_step(interval)}
    """)


def failed_login_by_user(params: ChartQueryParams) -> ChartQueryResult:
    time_filter = and_clause(build_time_filter(hours_or(params, 24 * 7)))
    return _session_chart(f"""
    SELECT user,
           count() AS failure_count,
           groupArray(client_address) AS client_addresses
    FROM system.session_log
    WHERE type = 'LoginFailure'
          {time_filter}
    GROUP BY user
    ORDER BY failure_count DESC
    LIMIT 10
    """)


def active_sessions_count(params: ChartQueryParams) -> ChartQueryResult:
    # A session is active when its latest event in the last hour is a login
    return _session_chart("""
    SELECT count() AS active_count,
           countDistinct(user) AS unique_users
    FROM (
      SELECT session_id,
             user,
             argMax(type, event_time) AS last_type
      FROM system.session_log
      WHERE event_time >= now() - INTERVAL 1 HOUR
      GROUP BY session_id, user
    )
    WHERE last_type = 'LoginSuccess'
    """)


def sessions_by_auth_type(params: ChartQueryParams) -> ChartQueryResult:
    time_filter = and_clause(build_time_filter(hours_or(params, 24 * 7)))
    return _session_chart(f"""
    SELECT auth_type,
           count() AS session_count,
           round(100 * session_count / sum(session_count) OVER (), 2) AS percentage
    FROM system.session_log
    WHERE type = 'LoginSuccess'
          {time_filter}
    GROUP BY auth_type
    ORDER BY session_count DESC
    """)


def sessions_by_interface(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.DAY)
    time_filter = and_clause(build_time_filter(hours_or(params, 24 * 7)))
    return _session_chart(f"""
    SELECT {apply_interval(interval, 'event_time')},
           interface,
           count() AS session_count
    FROM system.session_log
    WHERE type = 'LoginSuccess'
          {time_filter}
    GROUP BY event_time, interface
    ORDER BY event_time ASC, session_count DESC
    """)


SECURITY_CHARTS = {
    "login-success-rate": login_success_rate,
    "failed-login-by-user": failed_login_by_user,
    "active-sessions-count": active_sessions_count,
    "sessions-by-auth-type": sessions_by_auth_type,
    "sessions-by-interface": sessions_by_interface,
}

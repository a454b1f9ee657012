from mapping_engine.query.soql import QueryPlan, build_soql_query, filter_query_results

__all__ = ["QueryPlan", "build_soql_query", "filter_query_results"]

"""ClusterLimit Controller - projects a cluster-wide ClusterLimit into per-namespace LimitRanges."""

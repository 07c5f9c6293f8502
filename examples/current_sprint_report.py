#!/usr/bin/env python
"""Print the current sprint as a work item tree, followed by an analytics summary"""
import asyncio
import os
import sys

from dotenv import load_dotenv

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from workitem_engine.analytics import prepare_analytics_summary
from workitem_engine.hierarchy import build_hierarchy, flatten_hierarchy
from workitem_engine.service_manager import ServiceManager, create_connection


async def main():
    load_dotenv()
    org_url = os.getenv('AZURE_DEVOPS_ORG_URL')
    project = os.getenv('AZURE_DEVOPS_PROJECT')

    print(f"🔗 Organization: {org_url}")
    print(f"📁 Project: {project}\n")

    manager = ServiceManager(create_connection(org_url, os.getenv('AZURE_DEVOPS_PAT')), default_project=project)
    sprint_service = manager.get_sprint_service()
    workitem_service = manager.get_workitem_service()

    current_sprint = await sprint_service.get_current_sprint()
    if current_sprint is None:
        print("No current sprint found")
        return

    print("=" * 70)
    print(f"🏃 {current_sprint.name} ({current_sprint.path})")
    print("=" * 70)

    items = await workitem_service.search("current_sprint", filters={"ignoreStates": ["Removed"]})
    hierarchy = build_hierarchy(await workitem_service.enrich(items))

    for node in flatten_hierarchy(hierarchy):
        item = node.item
        badge = f"  ⬆ #{node.parent_badge.id}" if node.parent_badge else ""
        print(f"{'   ' * node.level}#{item.id} [{item.work_item_type}] {item.title} - {item.state}{badge}")

    if not items:
        print("\n  No work items found in current sprint")

    print(f"\n{'=' * 70}")
    recent = await workitem_service.search("recent", "90", limit=2000)
    print(prepare_analytics_summary(recent, await sprint_service.get_sprints()))


if __name__ == '__main__':
    asyncio.run(main())

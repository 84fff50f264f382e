from __future__ import annotations

import argparse
from pathlib import Path

from infra_provisioner.config import apply, load, plan, rotate


def _progress(step: object, event: str) -> None:
    node_id = getattr(step, "node_id", "unknown")
    if event == "start":
        print(f"[apply:start] {node_id}")
    else:
        print(f"[apply:done]  {node_id}")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Plan/apply infra-provisioner config via Python API"
    )
    parser.add_argument("--config", default="infra-provisioner.yaml", help="Path to config file")
    parser.add_argument("--apply", action="store_true", help="Apply the generated plan")
    parser.add_argument("--rotate", action="store_true", help="Rotate secrets that are due")
    args = parser.parse_args()

    config = load(Path(args.config))

    plan_obj = plan(config)
    print("Plan summary:", plan_obj.summary())
    for level in plan_obj.levels():
        for step in level:
            print(f"- L{step.level} {step.action.value:7} {step.node_id}")

    if args.apply:
        result = apply(plan_obj, config, progress=_progress)
        print("Apply summary:", result.summary())
        print("Outputs:", result.outputs)

    if args.rotate:
        for outcome in rotate(config):
            print(f"{outcome.secret_id}: {outcome.status}")


if __name__ == "__main__":
    main()

"""
Reconciliation logic for MyResource custom resources.

reconcile() is called whenever a MyResource object is added, modified or
deleted. Edit this code through the API and save it: the next event runs the
new version, no restart needed.

Example MyResource:

    apiVersion: example.com/v1
    kind: MyResource
    metadata:
      name: example-resource
    spec:
      message: "Hello from the hot reconciler!"
      replicas: 3
"""

from datetime import datetime, timezone

from plugins.reconcilers import ReconcileError


def reconcile(resource, ctx):
    name = resource.metadata.name
    namespace = resource.metadata.namespace
    spec = resource.spec
    status = resource.status

    ctx.separator()
    ctx.info(f"🔄 Reconciling MyResource: {namespace}/{name}")
    ctx.separator()

    if spec:
        ctx.info("📋 Spec:")
        if spec.get("message"):
            ctx.info(f'   Message: "{spec["message"]}"')
        if spec.get("replicas") is not None:
            ctx.info(f"   Replicas: {spec['replicas']}")

    if resource.is_deleting:
        ctx.info("🗑️  Resource is being deleted")
        # Cleanup logic goes here
        return

    replicas = spec.get("replicas")
    if isinstance(replicas, (int, float)) and replicas < 0:
        raise ReconcileError(f"Invalid replicas count: {replicas} (must be >= 0)")

    desired_message = spec.get("message") or ""
    if status.get("state") == "Ready" and status.get("message") == desired_message:
        ctx.success("Resource is already in desired state")
        return

    ctx.info("⚙️  Processing resource...")
    if replicas:
        ctx.info(f"   Would create/update {replicas} replicas")
    if desired_message:
        ctx.info(f'   Would configure with message: "{desired_message}"')

    ctx.update_status(
        {
            "state": "Ready",
            "message": desired_message,
            "replicas": replicas or 0,
            "lastReconciled": datetime.now(timezone.utc).isoformat(),
            "observedGeneration": resource.metadata.generation,
        }
    )
    ctx.success(f"✨ Reconciliation complete for {name}")

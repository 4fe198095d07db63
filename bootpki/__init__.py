#!/usr/bin/env python3
#
# Generates the X.509 credentials needed to bootstrap a Kubernetes control
# plane and its etcd cluster.

"""Pod, service, gang-scheduling and job reconcilers over an object store."""